"""Merchant registration, profile updates, assignment and soft deletion"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from merchant_crm.config import Settings
from merchant_crm.domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from merchant_crm.domain.models import Actor, MerchantCategory, PipelineStage, UserRole
from merchant_crm.domain.pipeline import INITIAL_NEXT_ACTION, resolve_next_action
from merchant_crm.infrastructure.database.models import Merchant
from merchant_crm.infrastructure.database.repositories import (
    MerchantRepository,
    OnboardingRepository,
    PipelineRepository,
    UserRepository,
)
from merchant_crm.services.access import AccessGate
from merchant_crm.utils.date_utils import utcnow

PROFILE_FIELDS = frozenset(
    {
        "name",
        "category",
        "contact_person_name",
        "contact_phone",
        "contact_email",
        "location",
        "description",
        "assigned_rep_id",
    }
)
REQUIRED_PROFILE_FIELDS = frozenset({"name", "category", "contact_person_name", "contact_phone", "location"})


@dataclass
class MerchantProfile:
    """Profile fields supplied on registration"""

    name: str
    category: MerchantCategory
    contact_person_name: str
    contact_phone: str
    location: str
    contact_email: Optional[str] = None
    description: Optional[str] = None
    assigned_rep_id: Optional[uuid.UUID] = None


@dataclass
class MerchantOverview:
    total_merchants: int
    live_count: int
    pipeline_distribution: Dict[PipelineStage, int] = field(default_factory=dict)
    category_distribution: Dict[MerchantCategory, int] = field(default_factory=dict)


class MerchantService:
    """Merchant lifecycle outside the pipeline and onboarding engines"""

    def __init__(self, db: Session, settings: Settings, gate: Optional[AccessGate] = None):
        self.db = db
        self.settings = settings
        self.gate = gate or AccessGate(db)
        self.merchants = MerchantRepository(db)
        self.pipelines = PipelineRepository(db)
        self.onboardings = OnboardingRepository(db)
        self.users = UserRepository(db)

    def create_merchant(self, actor: Actor, profile: MerchantProfile) -> Merchant:
        """
        Register a merchant together with its pipeline at PENDING_FIRST_VISIT.

        Reps are always assigned to the merchants they register; admins may
        pick any active admin/rep or leave the merchant unassigned.
        """
        if not actor.can_write:
            raise ForbiddenError("Read-only users cannot create merchants")

        assigned_rep_id = actor.id if actor.role == UserRole.REP else profile.assigned_rep_id
        if assigned_rep_id is not None and self.users.get_assignable_rep(assigned_rep_id) is None:
            raise ValidationError.for_field("assignedRepId", "Invalid assigned representative")

        merchant = self.merchants.create_merchant(
            created_by_id=actor.id,
            name=profile.name,
            category=profile.category,
            contact_person_name=profile.contact_person_name,
            contact_phone=profile.contact_phone,
            contact_email=profile.contact_email,
            location=profile.location,
            description=profile.description,
            assigned_rep_id=assigned_rep_id,
        )

        _, next_action_date = resolve_next_action(
            PipelineStage.PENDING_FIRST_VISIT,
            utcnow(),
            default_days=self.settings.next_action_default_days,
        )
        pipeline = self.pipelines.create_pipeline(
            merchant_id=merchant.id,
            stage=PipelineStage.PENDING_FIRST_VISIT,
            next_action_description=INITIAL_NEXT_ACTION,
            next_action_date=next_action_date,
            updated_by_id=actor.id,
        )
        self.pipelines.add_history(
            pipeline_id=pipeline.id,
            stage=PipelineStage.PENDING_FIRST_VISIT,
            previous_stage=None,
            changed_by_id=actor.id,
            notes="Initial merchant registration",
        )
        self.db.flush()
        return merchant

    def get_merchant(self, actor: Actor, merchant_id: uuid.UUID) -> Merchant:
        return self.gate.require_merchant(actor, merchant_id)

    def list_merchants(
        self,
        actor: Actor,
        stage: Optional[PipelineStage] = None,
        limit: int = 50,
    ) -> List[Merchant]:
        """Admins list everything; other roles only their assigned merchants"""
        assigned_rep_id = None if actor.is_admin else actor.id
        return self.merchants.list_merchants(assigned_rep_id=assigned_rep_id, stage=stage, limit=limit)

    def update_merchant(self, actor: Actor, merchant_id: uuid.UUID, changes: Dict[str, Any]) -> Merchant:
        """
        Partial profile update by anyone allowed to work on the merchant.

        ``assigned_rep_id`` in a rep's update is dropped; only admins reassign.

        Raises:
            NotFoundError, ForbiddenError, ValidationError
        """
        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise ValidationError(
                "Unknown merchant fields",
                [{"field": name, "message": "Field is not updatable"} for name in sorted(unknown)],
            )
        if not changes:
            raise ValidationError("At least one field must be provided")
        cleared = sorted(name for name in REQUIRED_PROFILE_FIELDS if name in changes and changes[name] is None)
        if cleared:
            raise ValidationError(
                "Required fields cannot be cleared",
                [{"field": name, "message": "Field cannot be null"} for name in cleared],
            )

        merchant = self.gate.require_merchant(actor, merchant_id, write=True)

        changes = dict(changes)
        if "assigned_rep_id" in changes:
            rep_id = changes["assigned_rep_id"]
            if not actor.is_admin:
                changes.pop("assigned_rep_id")
            elif rep_id is not None and self.users.get_assignable_rep(rep_id) is None:
                raise ValidationError.for_field("assignedRepId", "Invalid assigned representative")

        for name, value in changes.items():
            setattr(merchant, name, value)
        self.db.flush()
        return merchant

    def overview(self, actor: Actor) -> MerchantOverview:
        """Counts across the merchants visible to the actor"""
        scope = None if actor.is_admin else actor.id
        return MerchantOverview(
            total_merchants=self.merchants.count_active(assigned_rep_id=scope),
            live_count=self.onboardings.count_live(assigned_rep_id=scope),
            pipeline_distribution=self.pipelines.count_by_stage(assigned_rep_id=scope),
            category_distribution=self.merchants.count_by_category(assigned_rep_id=scope),
        )

    def assign_rep(self, actor: Actor, merchant_id: uuid.UUID, rep_id: Optional[uuid.UUID]) -> Merchant:
        """Change the canonical assignment; admin only"""
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can change rep assignments")

        merchant = self.merchants.get_active(merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant not found")

        if rep_id is not None and self.users.get_assignable_rep(rep_id) is None:
            raise ValidationError.for_field("assignedRepId", "Invalid assigned representative")

        merchant.assigned_rep_id = rep_id
        self.db.flush()
        return merchant

    def delete_merchant(self, actor: Actor, merchant_id: uuid.UUID) -> Merchant:
        """Soft delete: set the tombstone and clear optional contact details"""
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can delete merchants")

        merchant = self.merchants.get_active(merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant not found")

        merchant.deleted_at = utcnow()
        merchant.contact_email = None
        merchant.description = None
        self.db.flush()
        return merchant
