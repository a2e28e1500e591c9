"""Merchant activity log - calls, visits and messages recorded against a merchant"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from merchant_crm.domain.activities import (
    average_per_merchant,
    can_edit_activity,
    resolve_completed_date,
    validate_completed_date,
)
from merchant_crm.domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from merchant_crm.domain.models import Actor, ActivityOutcome, ActivityType
from merchant_crm.infrastructure.database.models import Activity, User
from merchant_crm.infrastructure.database.repositories import (
    ActivityRepository,
    MerchantRepository,
    UserRepository,
)
from merchant_crm.services.access import AccessGate
from merchant_crm.utils.date_utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(days=30)

UPDATABLE_FIELDS = frozenset(
    {"type", "summary", "description", "outcome", "duration_minutes", "scheduled_date", "completed_date"}
)
REQUIRED_FIELDS = frozenset({"type", "summary"})


@dataclass
class ActivityDraft:
    """Fields supplied when logging an activity"""

    merchant_id: uuid.UUID
    type: ActivityType
    summary: str
    description: Optional[str] = None
    outcome: Optional[ActivityOutcome] = None
    duration_minutes: Optional[int] = None
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None


@dataclass
class ActivityFilters:
    merchant_id: Optional[uuid.UUID] = None
    activity_type: Optional[ActivityType] = None
    outcome: Optional[ActivityOutcome] = None
    created_by_id: Optional[uuid.UUID] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None


@dataclass
class ActivitySummary:
    total_activities: int
    recent_activities: int
    avg_activities_per_merchant: float
    type_distribution: Dict[ActivityType, int] = field(default_factory=dict)
    outcome_distribution: Dict[ActivityOutcome, int] = field(default_factory=dict)


@dataclass
class RepPerformance:
    rep: User
    date_from: Optional[datetime]
    date_to: Optional[datetime]
    total_activities: int
    assigned_merchants: int
    avg_activities_per_merchant: float
    by_type: Dict[ActivityType, int] = field(default_factory=dict)
    by_outcome: Dict[ActivityOutcome, int] = field(default_factory=dict)


class ActivityService:
    """Activity log scoped by the same access rules as merchants"""

    def __init__(self, db: Session, gate: Optional[AccessGate] = None):
        self.db = db
        self.gate = gate or AccessGate(db)
        self.activities = ActivityRepository(db)
        self.merchants = MerchantRepository(db)
        self.users = UserRepository(db)

    def list_activities(
        self,
        actor: Actor,
        filters: Optional[ActivityFilters] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "createdAt",
        descending: bool = True,
    ) -> Tuple[List[Activity], int]:
        """
        One page of activities visible to the actor, plus the total match count.

        Non-admins only see activities on merchants assigned to them, and their
        ``created_by_id`` filter is ignored.
        """
        filters = filters or ActivityFilters()
        return self.activities.list_activities(
            page=page,
            limit=limit,
            sort_by=sort_by,
            descending=descending,
            assigned_rep_id=None if actor.is_admin else actor.id,
            merchant_id=filters.merchant_id,
            activity_type=filters.activity_type,
            outcome=filters.outcome,
            created_by_id=filters.created_by_id if actor.is_admin else None,
            date_from=filters.date_from,
            date_to=filters.date_to,
            search=filters.search,
        )

    def list_for_merchant(
        self,
        actor: Actor,
        merchant_id: uuid.UUID,
        filters: Optional[ActivityFilters] = None,
        **paging,
    ) -> Tuple[List[Activity], int]:
        self.gate.require_merchant(actor, merchant_id)
        filters = filters or ActivityFilters()
        filters.merchant_id = merchant_id
        return self.list_activities(actor, filters, **paging)

    def get_activity(self, actor: Actor, activity_id: uuid.UUID) -> Activity:
        activity = self.activities.get_active(activity_id)
        if activity is None:
            raise NotFoundError("Activity not found")
        if not self.gate.can_access(actor.id, actor.role, activity.merchant_id):
            raise ForbiddenError("Access denied to this activity")
        return activity

    def create_activity(self, actor: Actor, draft: ActivityDraft) -> Activity:
        """
        Log an activity against a merchant the actor works on.

        Without either date the activity is recorded as completed now.

        Raises:
            ForbiddenError, NotFoundError, ValidationError
        """
        if not actor.can_write:
            raise ForbiddenError("Read-only users cannot log activities")
        self.gate.require_merchant(actor, draft.merchant_id, write=True)

        now = utcnow()
        completed_date = ensure_aware(draft.completed_date)
        validate_completed_date(completed_date, now)
        activity = self.activities.create_activity(
            merchant_id=draft.merchant_id,
            created_by_id=actor.id,
            type=draft.type,
            summary=draft.summary,
            description=draft.description or None,
            outcome=draft.outcome,
            duration_minutes=draft.duration_minutes,
            scheduled_date=ensure_aware(draft.scheduled_date),
            completed_date=resolve_completed_date(completed_date, draft.scheduled_date, now),
        )
        logger.info(
            "Activity logged",
            extra={"activity_id": str(activity.id), "merchant_id": str(draft.merchant_id), "type": draft.type.value},
        )
        return activity

    def update_activity(self, actor: Actor, activity_id: uuid.UUID, changes: Dict[str, Any]) -> Activity:
        """Partial update; admins edit any activity, reps their own on merchants still assigned to them"""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                "Unknown activity fields",
                [{"field": name, "message": "Field is not updatable"} for name in sorted(unknown)],
            )
        if not changes:
            raise ValidationError("At least one field must be provided")
        cleared = sorted(name for name in REQUIRED_FIELDS if name in changes and changes[name] is None)
        if cleared:
            raise ValidationError(
                "Required fields cannot be cleared",
                [{"field": name, "message": "Field cannot be null"} for name in cleared],
            )

        activity = self._editable(actor, activity_id, "Access denied to update this activity")
        changes = dict(changes)
        for name in ("scheduled_date", "completed_date"):
            if name in changes:
                changes[name] = ensure_aware(changes[name])
        validate_completed_date(changes.get("completed_date"), utcnow())

        for name, value in changes.items():
            if name == "description":
                value = value or None
            setattr(activity, name, value)
        self.db.flush()
        return activity

    def delete_activity(self, actor: Actor, activity_id: uuid.UUID) -> Activity:
        """Soft delete; the free-text description is dropped"""
        activity = self._editable(actor, activity_id, "Access denied to delete this activity")
        activity.deleted_at = utcnow()
        activity.description = None
        self.db.flush()
        return activity

    def _editable(self, actor: Actor, activity_id: uuid.UUID, denied: str) -> Activity:
        activity = self.activities.get_active(activity_id)
        if activity is None:
            raise NotFoundError("Activity not found")
        if not can_edit_activity(actor.id, actor.role, activity.created_by_id, activity.merchant.assigned_rep_id):
            raise ForbiddenError(denied)
        return activity

    def summary(self, actor: Actor) -> ActivitySummary:
        scope = {"assigned_rep_id": None if actor.is_admin else actor.id}
        total = self.activities.count(**scope)
        return ActivitySummary(
            total_activities=total,
            recent_activities=self.activities.count(date_from=utcnow() - RECENT_WINDOW, **scope),
            avg_activities_per_merchant=average_per_merchant(
                total, self.activities.count_merchants_with_activities(**scope)
            ),
            type_distribution=self.activities.count_by_type(**scope),
            outcome_distribution=self.activities.count_by_outcome(**scope),
        )

    def rep_performance(
        self,
        actor: Actor,
        rep_id: uuid.UUID,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> RepPerformance:
        """Admin only: what one active rep logged, against the merchants assigned to them"""
        if not actor.is_admin:
            raise ForbiddenError("Access denied. Admin privileges required.")
        rep = self.users.get_active_rep(rep_id)
        if rep is None:
            raise NotFoundError("Sales representative not found")

        window = {"created_by_id": rep_id, "date_from": date_from, "date_to": date_to}
        total = self.activities.count(**window)
        assigned = self.merchants.count_active(assigned_rep_id=rep_id)
        return RepPerformance(
            rep=rep,
            date_from=date_from,
            date_to=date_to,
            total_activities=total,
            assigned_merchants=assigned,
            avg_activities_per_merchant=average_per_merchant(total, assigned),
            by_type=self.activities.count_by_type(**window),
            by_outcome=self.activities.count_by_outcome(**window),
        )
