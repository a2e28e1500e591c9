"""Onboarding completion rules - weighted checklist score and status derivation"""

from typing import Dict, Optional

from merchant_crm.domain.models import OnboardingStatus, RequirementFlags

# Each requirement contributes equally toward completion
REQUIREMENT_WEIGHTS: Dict[str, float] = {
    "survey_filled": 0.25,
    "offers_added": 0.25,
    "branches_covered": 0.25,
    "assets_complete": 0.25,
}

REQUIREMENT_DESCRIPTIONS: Dict[str, str] = {
    "survey_filled": "Merchant survey completed with all required information",
    "offers_added": "At least one offer/product added to the system",
    "branches_covered": "All merchant branch locations covered and verified",
    "assets_complete": "Logo, description, and location assets uploaded and verified",
}


def calculate_completion_percentage(flags: RequirementFlags) -> float:
    """
    Sum the weights of the requirements that are met.

    Example:
        survey + offers done, branches + assets pending -> 0.5
    """
    return sum(weight for name, weight in REQUIREMENT_WEIGHTS.items() if getattr(flags, name))


def all_requirements_met(flags: RequirementFlags) -> bool:
    return all(getattr(flags, name) for name in REQUIREMENT_WEIGHTS)


def determine_status(
    flags: RequirementFlags,
    qa_approved: Optional[bool],
    current_status: OnboardingStatus,
) -> OnboardingStatus:
    """
    Derive onboarding status from the checklist and the QA verdict.

    Rules:
    - Any unmet requirement -> IN_PROGRESS, whatever QA said
    - All met, QA pending -> READY_FOR_QA, unless already QA_FAILED (sticky)
    - All met, QA rejected -> QA_FAILED
    - All met, QA approved -> LIVE
    """
    if not all_requirements_met(flags):
        return OnboardingStatus.IN_PROGRESS

    if qa_approved is None:
        if current_status == OnboardingStatus.QA_FAILED:
            return OnboardingStatus.QA_FAILED
        return OnboardingStatus.READY_FOR_QA

    if qa_approved:
        return OnboardingStatus.LIVE
    return OnboardingStatus.QA_FAILED


def went_live(previous: OnboardingStatus, new: OnboardingStatus) -> bool:
    """True only on the edge into LIVE"""
    return previous != OnboardingStatus.LIVE and new == OnboardingStatus.LIVE
