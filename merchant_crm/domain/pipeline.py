"""Pipeline stage rules - transition graph and next-action defaults"""

import math
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional, Tuple

from merchant_crm.domain.exceptions import AlreadyInStageError, InvalidTransitionError, ValidationError
from merchant_crm.domain.models import PipelineStage

# Directed graph; the only way back out of WON is REJECTED, and REJECTED is terminal.
STAGE_TRANSITIONS: Dict[PipelineStage, Tuple[PipelineStage, ...]] = {
    PipelineStage.PENDING_FIRST_VISIT: (PipelineStage.FOLLOW_UP_NEEDED, PipelineStage.REJECTED),
    PipelineStage.FOLLOW_UP_NEEDED: (PipelineStage.CONTRACT_SENT, PipelineStage.REJECTED),
    PipelineStage.CONTRACT_SENT: (
        PipelineStage.WON,
        PipelineStage.FOLLOW_UP_NEEDED,
        PipelineStage.REJECTED,
    ),
    PipelineStage.WON: (PipelineStage.REJECTED,),
    PipelineStage.REJECTED: (),
}

DEFAULT_NEXT_ACTIONS: Dict[PipelineStage, str] = {
    PipelineStage.PENDING_FIRST_VISIT: "Schedule and conduct first visit with merchant",
    PipelineStage.FOLLOW_UP_NEEDED: "Follow up on merchant interest and address concerns",
    PipelineStage.CONTRACT_SENT: "Follow up on contract status and get signature",
    PipelineStage.WON: "Begin onboarding process and complete requirements",
    PipelineStage.REJECTED: "No further action required",
}

INITIAL_NEXT_ACTION = "Schedule first visit with merchant"

TERMINAL_STAGES: FrozenSet[PipelineStage] = frozenset(
    stage for stage, targets in STAGE_TRANSITIONS.items() if not targets
)


def allowed_transitions(stage: PipelineStage) -> Tuple[PipelineStage, ...]:
    """Stages reachable in one step from ``stage``"""
    return STAGE_TRANSITIONS.get(stage, ())


def validate_transition(current: PipelineStage, requested: PipelineStage) -> None:
    """
    Check a requested stage change against the transition graph.

    Raises:
        AlreadyInStageError: requested == current
        InvalidTransitionError: requested is not an outgoing edge of current
    """
    if current == requested:
        raise AlreadyInStageError(f"Merchant is already in the {current.value} stage")

    allowed = allowed_transitions(current)
    if requested not in allowed:
        raise InvalidTransitionError(current, requested, allowed)


def validate_next_action_date(next_action_date: Optional[datetime], now: datetime) -> None:
    """Caller-supplied follow-up dates may not lie in the past"""
    if next_action_date is not None and next_action_date < now:
        raise ValidationError.for_field("nextActionDate", "Next action date must not be in the past")


def resolve_next_action(
    stage: PipelineStage,
    now: datetime,
    description: Optional[str] = None,
    next_action_date: Optional[datetime] = None,
    default_days: int = 7,
) -> Tuple[str, Optional[datetime]]:
    """
    Pick the next action for a stage, preferring caller overrides.

    Without an override the date is ``default_days`` out, except for
    REJECTED which has no follow-up.
    """
    final_description = description or DEFAULT_NEXT_ACTIONS[stage]
    if next_action_date is not None:
        final_date = next_action_date
    elif stage == PipelineStage.REJECTED:
        final_date = None
    else:
        final_date = now + timedelta(days=default_days)
    return final_description, final_date


def is_overdue(next_action_date: Optional[datetime], now: datetime) -> bool:
    return next_action_date is not None and next_action_date < now


def days_past_due(next_action_date: Optional[datetime], now: datetime) -> int:
    """Whole days (rounded up) since the next action fell due"""
    if next_action_date is None:
        return 0
    seconds = (now - next_action_date).total_seconds()
    return max(0, math.ceil(seconds / 86400))
