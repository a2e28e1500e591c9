"""Pipeline state machine - validated stage transitions with Won side effects"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from merchant_crm.config import Settings
from merchant_crm.domain.exceptions import NotFoundError, ValidationError
from merchant_crm.domain.models import Actor, PayoutType, PipelineStage
from merchant_crm.domain.pipeline import resolve_next_action, validate_next_action_date, validate_transition
from merchant_crm.infrastructure.database.models import Merchant, Onboarding, Pipeline
from merchant_crm.infrastructure.database.repositories import OnboardingRepository, PipelineRepository
from merchant_crm.services.access import AccessGate
from merchant_crm.services.payouts import PayoutLedgerService, PayoutResult
from merchant_crm.utils.date_utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)


@dataclass
class StageTransitionResult:
    """Outcome of a successful stage change"""

    merchant: Merchant
    pipeline: Pipeline
    previous_stage: PipelineStage
    onboarding: Optional[Onboarding] = None
    onboarding_created: bool = False
    payout: Optional[PayoutResult] = None


class PipelineStateMachine:
    """
    Applies stage transitions for one merchant at a time.

    All writes go through the caller's session; the caller commits or rolls
    back the unit of work. The pipeline row is locked for the duration of the
    transaction so concurrent transitions on one merchant serialize.
    """

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
        self.pipelines = PipelineRepository(db)
        self.onboardings = OnboardingRepository(db)

    def get_pipeline(self, merchant_id: uuid.UUID, actor: Actor) -> Pipeline:
        self.gate.require_merchant(actor, merchant_id)
        pipeline = self.pipelines.get_by_merchant(merchant_id)
        if pipeline is None:
            raise NotFoundError("Pipeline not found")
        return pipeline

    def transition_stage(
        self,
        merchant_id: uuid.UUID,
        actor: Actor,
        new_stage: PipelineStage,
        notes: Optional[str] = None,
        next_action_description: Optional[str] = None,
        next_action_date: Optional[datetime] = None,
    ) -> StageTransitionResult:
        """
        Move a merchant to ``new_stage``.

        Flow:
        1. Access gate (write) and row lock on the pipeline
        2. Validate against the transition graph
        3. Persist stage, next action and a history row
        4. On WON with an assigned rep: ensure onboarding exists, create WON payout

        Raises:
            NotFoundError, ForbiddenError, AlreadyInStageError,
            InvalidTransitionError, ValidationError
        """
        merchant = self.gate.require_merchant(actor, merchant_id, write=True)
        pipeline = self.pipelines.get_by_merchant(merchant_id, for_update=True)
        if pipeline is None:
            raise NotFoundError("Pipeline not found")

        current_stage = pipeline.current_stage
        validate_transition(current_stage, new_stage)

        if new_stage == PipelineStage.REJECTED and not (notes and notes.strip()):
            raise ValidationError.for_field("notes", "A reason is required when rejecting a merchant")

        now = utcnow()
        next_action_date = ensure_aware(next_action_date)
        validate_next_action_date(next_action_date, now)

        description, action_date = resolve_next_action(
            new_stage,
            now,
            description=next_action_description,
            next_action_date=next_action_date,
            default_days=self.settings.next_action_default_days,
        )

        pipeline.current_stage = new_stage
        pipeline.next_action_description = description
        pipeline.next_action_date = action_date
        pipeline.last_updated_by_id = actor.id

        self.pipelines.add_history(
            pipeline_id=pipeline.id,
            stage=new_stage,
            previous_stage=current_stage,
            changed_by_id=actor.id,
            notes=notes or f"Stage changed from {current_stage.value} to {new_stage.value}",
        )

        result = StageTransitionResult(merchant=merchant, pipeline=pipeline, previous_stage=current_stage)

        if new_stage == PipelineStage.WON and merchant.assigned_rep_id is not None:
            onboarding = self.onboardings.get_by_merchant(merchant_id, for_update=True)
            if onboarding is None:
                onboarding = self.onboardings.create_onboarding(merchant_id, created_by_id=actor.id)
                result.onboarding_created = True
            result.onboarding = onboarding
            result.payout = self.payouts.create_payout(
                merchant_id=merchant_id,
                recipient_id=merchant.assigned_rep_id,
                payout_type=PayoutType.WON,
                created_by=actor.id,
            )
        elif new_stage == PipelineStage.WON:
            logger.warning(
                "Merchant won without an assigned rep; onboarding and payout skipped",
                extra={"merchant_id": str(merchant_id)},
            )

        self.db.flush()
        return result

    def update_next_action(
        self,
        merchant_id: uuid.UUID,
        actor: Actor,
        next_action_description: str,
        next_action_date: Optional[datetime] = None,
    ) -> Pipeline:
        """Replace the follow-up reminder; an omitted date clears it"""
        self.gate.require_merchant(actor, merchant_id, write=True)
        pipeline = self.pipelines.get_by_merchant(merchant_id, for_update=True)
        if pipeline is None:
            raise NotFoundError("Pipeline not found")

        next_action_date = ensure_aware(next_action_date)
        validate_next_action_date(next_action_date, utcnow())

        pipeline.next_action_description = next_action_description
        pipeline.next_action_date = next_action_date
        pipeline.last_updated_by_id = actor.id
        self.db.flush()
        return pipeline
