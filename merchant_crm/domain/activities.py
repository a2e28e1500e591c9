"""Activity log rules - completion dates, edit rights and per-merchant averages"""

import uuid
from datetime import datetime
from typing import Optional

from merchant_crm.domain.exceptions import ValidationError
from merchant_crm.domain.models import UserRole
from merchant_crm.utils.number_utils import round_half_up

MAX_DURATION_MINUTES = 480


def validate_completed_date(completed_date: Optional[datetime], now: datetime) -> None:
    """An activity cannot be completed in the future"""
    if completed_date is not None and completed_date > now:
        raise ValidationError.for_field("completedDate", "Completed date must not be in the future")


def resolve_completed_date(
    completed_date: Optional[datetime],
    scheduled_date: Optional[datetime],
    now: datetime,
) -> Optional[datetime]:
    """
    Completion date stored on creation.

    An activity logged with neither date is taken to have just happened;
    one with only a scheduled date is still open.
    """
    if completed_date is not None:
        return completed_date
    if scheduled_date is None:
        return now
    return None


def can_edit_activity(
    actor_id: uuid.UUID,
    actor_role: UserRole,
    created_by_id: uuid.UUID,
    assigned_rep_id: Optional[uuid.UUID],
) -> bool:
    """Admins edit anything; reps only what they logged on merchants still assigned to them"""
    if actor_role == UserRole.ADMIN:
        return True
    if actor_role != UserRole.REP:
        return False
    return created_by_id == actor_id and assigned_rep_id == actor_id


def average_per_merchant(total: int, merchants: int) -> float:
    """Activities per merchant to one decimal place; 0 without merchants"""
    if merchants <= 0:
        return 0.0
    return round_half_up(total / merchants, 1)
