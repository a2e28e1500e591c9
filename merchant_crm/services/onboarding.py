"""Onboarding completion engine - checklist updates, status derivation and the Live trigger"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from merchant_crm.config import Settings
from merchant_crm.domain.exceptions import (
    AlreadyInStatusError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from merchant_crm.domain.models import Actor, OnboardingStatus, PayoutType, PipelineStage
from merchant_crm.domain.onboarding import (
    REQUIREMENT_WEIGHTS,
    calculate_completion_percentage,
    determine_status,
    went_live,
)
from merchant_crm.infrastructure.database.models import Merchant, Onboarding
from merchant_crm.infrastructure.database.repositories import OnboardingRepository, PipelineRepository
from merchant_crm.services.access import AccessGate
from merchant_crm.services.payouts import PayoutLedgerService, PayoutResult
from merchant_crm.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = frozenset(REQUIREMENT_WEIGHTS) | {"qa_approved", "qa_notes", "internal_notes"}


@dataclass
class OnboardingUpdateResult:
    """Outcome of a checklist update or status override"""

    merchant: Merchant
    onboarding: Onboarding
    previous_status: OnboardingStatus
    went_live: bool = False
    payout: Optional[PayoutResult] = None
    qa_update_ignored: bool = False


class OnboardingEngine:
    """Keeps onboarding status consistent with its checklist and QA verdict"""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        gate: Optional[AccessGate] = None,
        payouts: Optional[PayoutLedgerService] = None,
    ):
        self.db = db
        self.settings = settings
        self.gate = gate or AccessGate(db)
        self.payouts = payouts or PayoutLedgerService(db, settings)
        self.onboardings = OnboardingRepository(db)
        self.pipelines = PipelineRepository(db)

    def get_onboarding(self, merchant_id: uuid.UUID, actor: Actor) -> Onboarding:
        self.gate.require_merchant(actor, merchant_id)
        onboarding = self.onboardings.get_by_merchant(merchant_id)
        if onboarding is None:
            raise NotFoundError("Onboarding record not found")
        return onboarding

    def list_pending_qa(self, actor: Actor) -> List[Onboarding]:
        if not actor.is_admin:
            raise ForbiddenError("Access denied. Admin privileges required.")
        return self.onboardings.list_pending_qa()

    def update_requirements(
        self,
        merchant_id: uuid.UUID,
        actor: Actor,
        patch: Dict[str, Any],
    ) -> OnboardingUpdateResult:
        """
        Apply a partial checklist update and re-derive status.

        ``patch`` holds any subset of the requirement flags plus
        ``qa_approved``, ``qa_notes`` and ``internal_notes``. A QA verdict from
        a non-admin is dropped and the update proceeds without it.

        Raises:
            NotFoundError, ForbiddenError, InvalidStateError, ValidationError
        """
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(
                "Unknown onboarding fields",
                [{"field": name, "message": "Field is not updatable"} for name in sorted(unknown)],
            )
        if not patch:
            raise ValidationError("At least one field must be provided")

        merchant = self.gate.require_merchant(actor, merchant_id, write=True)
        pipeline = self.pipelines.get_by_merchant(merchant_id, for_update=True)
        onboarding = self.onboardings.get_by_merchant(merchant_id, for_update=True)
        if onboarding is None:
            raise NotFoundError("Onboarding record not found")

        if pipeline is None or pipeline.current_stage != PipelineStage.WON:
            raise InvalidStateError("Merchant must be in Won stage to update onboarding")

        changes = dict(patch)
        qa_update_ignored = False
        if "qa_approved" in changes and not actor.is_admin:
            changes.pop("qa_approved")
            qa_update_ignored = True
            logger.warning(
                "Ignoring QA approval from non-admin user",
                extra={"merchant_id": str(merchant_id), "user_id": str(actor.id)},
            )

        for name in REQUIREMENT_WEIGHTS:
            if changes.get(name) is not None:
                setattr(onboarding, name, bool(changes[name]))
        if "qa_approved" in changes:
            onboarding.qa_approved = changes["qa_approved"]
        if "qa_notes" in changes:
            onboarding.qa_notes = changes["qa_notes"]
        if "internal_notes" in changes:
            onboarding.internal_notes = changes["internal_notes"]

        previous_status = onboarding.status
        flags = onboarding.requirements
        onboarding.completion_percentage = calculate_completion_percentage(flags)
        onboarding.status = determine_status(flags, onboarding.qa_approved, previous_status)
        onboarding.last_updated_by_id = actor.id

        result = OnboardingUpdateResult(
            merchant=merchant,
            onboarding=onboarding,
            previous_status=previous_status,
            qa_update_ignored=qa_update_ignored,
        )
        self._apply_live_trigger(merchant, onboarding, previous_status, actor, result)
        self.db.flush()
        return result

    def update_status(
        self,
        merchant_id: uuid.UUID,
        actor: Actor,
        new_status: OnboardingStatus,
        notes: Optional[str] = None,
    ) -> OnboardingUpdateResult:
        """
        Admin override of the derived status.

        The next checklist update re-derives status from the flags again.
        Like checklist updates, it is refused once the merchant left WON.
        """
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can manually update onboarding status")

        merchant = self.gate.require_merchant(actor, merchant_id, write=True)
        pipeline = self.pipelines.get_by_merchant(merchant_id, for_update=True)
        onboarding = self.onboardings.get_by_merchant(merchant_id, for_update=True)
        if onboarding is None:
            raise NotFoundError("Onboarding record not found")

        if pipeline is None or pipeline.current_stage != PipelineStage.WON:
            raise InvalidStateError("Merchant must be in Won stage to update onboarding")

        previous_status = onboarding.status
        if previous_status == new_status:
            raise AlreadyInStatusError(f"Onboarding is already in the {new_status.value} status")

        onboarding.status = new_status
        if notes:
            onboarding.internal_notes = notes
        onboarding.last_updated_by_id = actor.id

        result = OnboardingUpdateResult(merchant=merchant, onboarding=onboarding, previous_status=previous_status)
        self._apply_live_trigger(merchant, onboarding, previous_status, actor, result)
        self.db.flush()
        return result

    def _apply_live_trigger(
        self,
        merchant: Merchant,
        onboarding: Onboarding,
        previous_status: OnboardingStatus,
        actor: Actor,
        result: OnboardingUpdateResult,
    ) -> None:
        if not went_live(previous_status, onboarding.status):
            return

        result.went_live = True
        # live_date records the first go-live only
        if onboarding.live_date is None:
            onboarding.live_date = utcnow()

        if merchant.assigned_rep_id is not None:
            result.payout = self.payouts.create_payout(
                merchant_id=merchant.id,
                recipient_id=merchant.assigned_rep_id,
                payout_type=PayoutType.LIVE,
                created_by=actor.id,
            )
