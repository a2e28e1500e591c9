"""Data access layer for CRM entities"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import Integer, cast, func, or_
from sqlalchemy.orm import Query, Session

from merchant_crm.domain.models import (
    ActivityOutcome,
    ActivityType,
    MerchantCategory,
    OnboardingStatus,
    PayoutType,
    PipelineStage,
    UserRole,
    UserStatus,
)
from merchant_crm.domain.onboarding import REQUIREMENT_WEIGHTS
from merchant_crm.domain.pipeline import TERMINAL_STAGES
from merchant_crm.infrastructure.database.models import (
    Activity,
    Merchant,
    Onboarding,
    PayoutLedger,
    Pipeline,
    PipelineStageHistory,
    User,
)


class UserRepository:
    """Repository for users"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def get_assignable_rep(self, user_id: uuid.UUID) -> Optional[User]:
        """Active admin or rep that merchants may be assigned to"""
        return (
            self.db.query(User)
            .filter(
                User.id == user_id,
                User.role.in_([UserRole.ADMIN, UserRole.REP]),
                User.status == UserStatus.ACTIVE,
            )
            .first()
        )

    def get_active_rep(self, user_id: uuid.UUID) -> Optional[User]:
        return (
            self.db.query(User)
            .filter(User.id == user_id, User.role == UserRole.REP, User.status == UserStatus.ACTIVE)
            .first()
        )

    def create_user(self, email: str, name: str, role: UserRole, phone: Optional[str] = None) -> User:
        user = User(email=email, name=name, role=role, phone=phone, status=UserStatus.ACTIVE)
        self.db.add(user)
        self.db.flush()
        return user


class MerchantRepository:
    """Repository for merchants"""

    def __init__(self, db: Session):
        self.db = db

    def create_merchant(self, created_by_id: uuid.UUID, **fields) -> Merchant:
        merchant = Merchant(created_by_id=created_by_id, **fields)
        self.db.add(merchant)
        self.db.flush()
        return merchant

    def get_active(self, merchant_id: uuid.UUID) -> Optional[Merchant]:
        """Fetch merchant unless soft-deleted"""
        return (
            self.db.query(Merchant)
            .filter(Merchant.id == merchant_id, Merchant.deleted_at.is_(None))
            .first()
        )

    def list_merchants(
        self,
        assigned_rep_id: Optional[uuid.UUID] = None,
        stage: Optional[PipelineStage] = None,
        limit: int = 50,
    ) -> List[Merchant]:
        """Newest first; optionally scoped to one rep and/or pipeline stage"""
        query = self._live_merchants(assigned_rep_id)
        if stage is not None:
            query = query.join(Pipeline).filter(Pipeline.current_stage == stage)
        return query.order_by(Merchant.created_at.desc()).limit(limit).all()

    def _live_merchants(self, assigned_rep_id: Optional[uuid.UUID]) -> Query:
        query = self.db.query(Merchant).filter(Merchant.deleted_at.is_(None))
        if assigned_rep_id is not None:
            query = query.filter(Merchant.assigned_rep_id == assigned_rep_id)
        return query

    def count_active(self, assigned_rep_id: Optional[uuid.UUID] = None) -> int:
        return self._live_merchants(assigned_rep_id).count()

    def count_by_category(self, assigned_rep_id: Optional[uuid.UUID] = None) -> Dict[MerchantCategory, int]:
        query = self._live_merchants(assigned_rep_id).with_entities(Merchant.category, func.count(Merchant.id))
        return {category: count for category, count in query.group_by(Merchant.category).all()}


class PipelineRepository:
    """Repository for pipelines and their stage history"""

    def __init__(self, db: Session):
        self.db = db

    def create_pipeline(
        self,
        merchant_id: uuid.UUID,
        stage: PipelineStage,
        next_action_description: Optional[str],
        next_action_date: Optional[datetime],
        updated_by_id: uuid.UUID,
    ) -> Pipeline:
        pipeline = Pipeline(
            merchant_id=merchant_id,
            current_stage=stage,
            next_action_description=next_action_description,
            next_action_date=next_action_date,
            last_updated_by_id=updated_by_id,
        )
        self.db.add(pipeline)
        self.db.flush()
        return pipeline

    def get_by_merchant(self, merchant_id: uuid.UUID, for_update: bool = False) -> Optional[Pipeline]:
        """Fetch pipeline; ``for_update`` takes a row lock for the rest of the transaction"""
        query = self.db.query(Pipeline).filter(Pipeline.merchant_id == merchant_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def add_history(
        self,
        pipeline_id: uuid.UUID,
        stage: PipelineStage,
        previous_stage: Optional[PipelineStage],
        changed_by_id: uuid.UUID,
        notes: Optional[str],
    ) -> PipelineStageHistory:
        entry = PipelineStageHistory(
            pipeline_id=pipeline_id,
            stage=stage,
            previous_stage=previous_stage,
            changed_by_id=changed_by_id,
            notes=notes,
        )
        self.db.add(entry)
        return entry

    def list_overdue(self, now: datetime, assigned_rep_id: Optional[uuid.UUID] = None) -> List[Pipeline]:
        """Open pipelines whose next action date has passed, most overdue first"""
        query = (
            self.db.query(Pipeline)
            .join(Merchant)
            .filter(
                Pipeline.next_action_date.is_not(None),
                Pipeline.next_action_date < now,
                Pipeline.current_stage.notin_(list(TERMINAL_STAGES)),
                Merchant.deleted_at.is_(None),
            )
        )
        if assigned_rep_id is not None:
            query = query.filter(Merchant.assigned_rep_id == assigned_rep_id)
        return query.order_by(Pipeline.next_action_date.asc()).all()

    def count_by_stage(self, assigned_rep_id: Optional[uuid.UUID] = None) -> Dict[PipelineStage, int]:
        query = (
            self.db.query(Pipeline.current_stage, func.count(Pipeline.id))
            .join(Merchant)
            .filter(Merchant.deleted_at.is_(None))
        )
        if assigned_rep_id is not None:
            query = query.filter(Merchant.assigned_rep_id == assigned_rep_id)
        return {stage: count for stage, count in query.group_by(Pipeline.current_stage).all()}


class OnboardingRepository:
    """Repository for onboarding checklists"""

    def __init__(self, db: Session):
        self.db = db

    def create_onboarding(self, merchant_id: uuid.UUID, created_by_id: uuid.UUID) -> Onboarding:
        onboarding = Onboarding(
            merchant_id=merchant_id,
            status=OnboardingStatus.IN_PROGRESS,
            survey_filled=False,
            offers_added=False,
            branches_covered=False,
            assets_complete=False,
            completion_percentage=0.0,
            created_by_id=created_by_id,
            last_updated_by_id=created_by_id,
        )
        self.db.add(onboarding)
        self.db.flush()
        return onboarding

    def get_by_merchant(self, merchant_id: uuid.UUID, for_update: bool = False) -> Optional[Onboarding]:
        query = self.db.query(Onboarding).filter(Onboarding.merchant_id == merchant_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def count_live(self, assigned_rep_id: Optional[uuid.UUID] = None) -> int:
        query = (
            self.db.query(Onboarding)
            .join(Merchant)
            .filter(Onboarding.status == OnboardingStatus.LIVE, Merchant.deleted_at.is_(None))
        )
        if assigned_rep_id is not None:
            query = query.filter(Merchant.assigned_rep_id == assigned_rep_id)
        return query.count()

    def _scoped(self, assigned_rep_id: Optional[uuid.UUID]) -> Query:
        query = self.db.query(Onboarding).join(Merchant).filter(Merchant.deleted_at.is_(None))
        if assigned_rep_id is not None:
            query = query.filter(Merchant.assigned_rep_id == assigned_rep_id)
        return query

    def status_breakdown(
        self, assigned_rep_id: Optional[uuid.UUID] = None
    ) -> Dict[OnboardingStatus, Tuple[int, float]]:
        """Per status: number of checklists and their mean completion (0.0-1.0)"""
        query = self._scoped(assigned_rep_id).with_entities(
            Onboarding.status,
            func.count(Onboarding.id),
            func.avg(Onboarding.completion_percentage),
        )
        return {
            status: (count, float(average or 0.0))
            for status, count, average in query.group_by(Onboarding.status).all()
        }

    def requirement_totals(self, assigned_rep_id: Optional[uuid.UUID] = None) -> Tuple[int, Dict[str, int]]:
        """Number of checklists and, per requirement, how many have it ticked"""
        names = tuple(REQUIREMENT_WEIGHTS)
        row = (
            self._scoped(assigned_rep_id)
            .with_entities(
                func.count(Onboarding.id),
                *(func.coalesce(func.sum(cast(getattr(Onboarding, name), Integer)), 0) for name in names),
            )
            .one()
        )
        total, *completed = row
        return total, {name: int(done) for name, done in zip(names, completed)}

    def list_pending_qa(self) -> List[Onboarding]:
        """Checklists of won merchants waiting on QA, oldest first"""
        return (
            self.db.query(Onboarding)
            .join(Merchant)
            .join(Pipeline, Pipeline.merchant_id == Onboarding.merchant_id)
            .filter(
                Onboarding.status == OnboardingStatus.READY_FOR_QA,
                Pipeline.current_stage == PipelineStage.WON,
                Merchant.deleted_at.is_(None),
            )
            .order_by(Onboarding.updated_at.asc())
            .all()
        )


class PayoutRepository:
    """Repository for the payout ledger (insert and read only)"""

    def __init__(self, db: Session):
        self.db = db

    def find(self, merchant_id: uuid.UUID, recipient_id: uuid.UUID, payout_type: PayoutType) -> Optional[PayoutLedger]:
        return (
            self.db.query(PayoutLedger)
            .filter(
                PayoutLedger.merchant_id == merchant_id,
                PayoutLedger.recipient_id == recipient_id,
                PayoutLedger.type == payout_type,
            )
            .first()
        )

    def create_payout(
        self,
        merchant_id: uuid.UUID,
        recipient_id: uuid.UUID,
        payout_type: PayoutType,
        amount: float,
        description: str,
        created_by_id: uuid.UUID,
    ) -> PayoutLedger:
        payout = PayoutLedger(
            merchant_id=merchant_id,
            recipient_id=recipient_id,
            type=payout_type,
            amount=amount,
            description=description,
            status="PENDING",
            created_by_id=created_by_id,
        )
        self.db.add(payout)
        self.db.flush()
        return payout

    def list_payouts(
        self,
        recipient_id: Optional[uuid.UUID] = None,
        merchant_id: Optional[uuid.UUID] = None,
        payout_type: Optional[PayoutType] = None,
    ) -> List[PayoutLedger]:
        query = self.db.query(PayoutLedger)
        if recipient_id is not None:
            query = query.filter(PayoutLedger.recipient_id == recipient_id)
        if merchant_id is not None:
            query = query.filter(PayoutLedger.merchant_id == merchant_id)
        if payout_type is not None:
            query = query.filter(PayoutLedger.type == payout_type)
        return query.order_by(PayoutLedger.created_at.desc()).all()


ACTIVITY_SORT_COLUMNS = {
    "createdAt": Activity.created_at,
    "scheduledDate": Activity.scheduled_date,
    "completedDate": Activity.completed_date,
    "type": Activity.type,
    "outcome": Activity.outcome,
}


class ActivityRepository:
    """Repository for the merchant activity log; soft-deleted rows and merchants are never returned"""

    def __init__(self, db: Session):
        self.db = db

    def create_activity(self, merchant_id: uuid.UUID, created_by_id: uuid.UUID, **fields) -> Activity:
        activity = Activity(merchant_id=merchant_id, created_by_id=created_by_id, **fields)
        self.db.add(activity)
        self.db.flush()
        return activity

    def get_active(self, activity_id: uuid.UUID) -> Optional[Activity]:
        return (
            self.db.query(Activity)
            .join(Merchant)
            .filter(
                Activity.id == activity_id,
                Activity.deleted_at.is_(None),
                Merchant.deleted_at.is_(None),
            )
            .first()
        )

    def _filtered(
        self,
        assigned_rep_id: Optional[uuid.UUID] = None,
        merchant_id: Optional[uuid.UUID] = None,
        activity_type: Optional[ActivityType] = None,
        outcome: Optional[ActivityOutcome] = None,
        created_by_id: Optional[uuid.UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> Query:
        query = (
            self.db.query(Activity)
            .join(Merchant)
            .filter(Activity.deleted_at.is_(None), Merchant.deleted_at.is_(None))
        )
        if assigned_rep_id is not None:
            query = query.filter(Merchant.assigned_rep_id == assigned_rep_id)
        if merchant_id is not None:
            query = query.filter(Activity.merchant_id == merchant_id)
        if activity_type is not None:
            query = query.filter(Activity.type == activity_type)
        if outcome is not None:
            query = query.filter(Activity.outcome == outcome)
        if created_by_id is not None:
            query = query.filter(Activity.created_by_id == created_by_id)
        if date_from is not None:
            query = query.filter(Activity.created_at >= date_from)
        if date_to is not None:
            query = query.filter(Activity.created_at <= date_to)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Activity.summary.ilike(pattern), Activity.description.ilike(pattern)))
        return query

    def list_activities(
        self,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "createdAt",
        descending: bool = True,
        **filters,
    ) -> Tuple[List[Activity], int]:
        """One page of matching activities plus the total match count"""
        query = self._filtered(**filters)
        total = query.count()
        column = ACTIVITY_SORT_COLUMNS[sort_by]
        order = column.desc() if descending else column.asc()
        items = query.order_by(order, Activity.id).offset((page - 1) * limit).limit(limit).all()
        return items, total

    def count(self, **filters) -> int:
        return self._filtered(**filters).count()

    def count_by_type(self, **filters) -> Dict[ActivityType, int]:
        query = self._filtered(**filters).with_entities(Activity.type, func.count(Activity.id))
        return {activity_type: count for activity_type, count in query.group_by(Activity.type).all()}

    def count_by_outcome(self, **filters) -> Dict[ActivityOutcome, int]:
        """Outcome histogram; activities without an outcome are left out"""
        query = (
            self._filtered(**filters)
            .filter(Activity.outcome.is_not(None))
            .with_entities(Activity.outcome, func.count(Activity.id))
        )
        return {outcome: count for outcome, count in query.group_by(Activity.outcome).all()}

    def count_merchants_with_activities(self, **filters) -> int:
        query = self._filtered(**filters).with_entities(func.count(func.distinct(Activity.merchant_id)))
        return query.scalar() or 0
