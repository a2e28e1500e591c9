"""Pipeline endpoints - stage transitions, next actions, overdue list and conversion stats"""

import logging
import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from merchant_crm.api.dependencies import get_current_actor, get_pipeline_state_machine, get_request_id
from merchant_crm.api.v1.schemas import (
    ConversionRates,
    ConversionStatsResponse,
    NextActionUpdateRequest,
    OverdueItem,
    OverdueResponse,
    PipelineResponse,
    StageHistoryItem,
    StageShare,
    StageUpdateRequest,
    StageTransitionResponse,
)
from merchant_crm.domain.exceptions import AlreadyInStageError, InvalidTransitionError
from merchant_crm.domain.models import Actor, PipelineStage
from merchant_crm.domain.pipeline import allowed_transitions, days_past_due, is_overdue
from merchant_crm.infrastructure.database.models import Pipeline
from merchant_crm.infrastructure.database.repositories import OnboardingRepository, PipelineRepository
from merchant_crm.infrastructure.database.session import get_db, unit_of_work
from merchant_crm.infrastructure.observability.logging import log_audit
from merchant_crm.infrastructure.observability.metrics import (
    record_payout,
    record_transition,
    rejected_transition_counter,
)
from merchant_crm.services.pipeline import PipelineStateMachine
from merchant_crm.utils.date_utils import ensure_aware, utcnow
from merchant_crm.utils.number_utils import percent

router = APIRouter()


def to_pipeline_response(pipeline: Pipeline, history_limit: int | None = None) -> PipelineResponse:
    history = pipeline.stage_history
    if history_limit is not None:
        history = history[:history_limit]
    next_action_date = ensure_aware(pipeline.next_action_date)
    return PipelineResponse(
        id=pipeline.id,
        merchant_id=pipeline.merchant_id,
        current_stage=pipeline.current_stage,
        next_action_description=pipeline.next_action_description,
        next_action_date=next_action_date,
        last_updated_by_id=pipeline.last_updated_by_id,
        is_overdue=is_overdue(next_action_date, utcnow()),
        possible_stages=list(allowed_transitions(pipeline.current_stage)),
        stage_history=[
            StageHistoryItem(
                stage=entry.stage,
                previous_stage=entry.previous_stage,
                changed_by_id=entry.changed_by_id,
                notes=entry.notes,
                created_at=ensure_aware(entry.created_at),
            )
            for entry in history
        ],
        updated_at=ensure_aware(pipeline.updated_at),
    )


@router.get("/pipeline/overdue", response_model=OverdueResponse)
def get_overdue_actions(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Open pipelines whose next action date has passed; reps see only their own"""
    now = utcnow()
    rep_scope = None if actor.is_admin else actor.id
    pipelines = PipelineRepository(db).list_overdue(now, assigned_rep_id=rep_scope)

    items = [
        OverdueItem(
            merchant_id=p.merchant_id,
            merchant_name=p.merchant.name,
            current_stage=p.current_stage,
            next_action_description=p.next_action_description,
            next_action_date=ensure_aware(p.next_action_date),
            days_past_due=days_past_due(ensure_aware(p.next_action_date), now),
        )
        for p in pipelines
    ]
    return OverdueResponse(items=items, total=len(items))


@router.get("/pipeline/stats/conversion", response_model=ConversionStatsResponse)
def get_conversion_stats(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """
    Stage distribution and conversion rates.

    Rates are whole percentages:
    - wonRate: won / non-rejected merchants
    - liveRate: live / won
    - overallRate: live / all merchants
    """
    rep_scope = None if actor.is_admin else actor.id
    stage_counts = PipelineRepository(db).count_by_stage(assigned_rep_id=rep_scope)
    live_count = OnboardingRepository(db).count_live(assigned_rep_id=rep_scope)

    total = sum(stage_counts.values())
    won_count = stage_counts.get(PipelineStage.WON, 0)
    rejected_count = stage_counts.get(PipelineStage.REJECTED, 0)
    active = total - rejected_count

    return ConversionStatsResponse(
        total_merchants=total,
        active_merchants=active,
        won_count=won_count,
        live_count=live_count,
        rejected_count=rejected_count,
        conversion_rates=ConversionRates(
            won_rate=percent(won_count, active),
            live_rate=percent(live_count, won_count),
            overall_rate=percent(live_count, total),
        ),
        stage_distribution={
            stage.value: StageShare(count=count, percentage=percent(count, total))
            for stage, count in stage_counts.items()
        },
    )


@router.get("/pipeline/{merchant_id}", response_model=PipelineResponse)
def get_pipeline(
    merchant_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    machine: PipelineStateMachine = Depends(get_pipeline_state_machine),
):
    """Pipeline with full stage history, overdue flag and reachable stages"""
    return to_pipeline_response(machine.get_pipeline(merchant_id, actor))


@router.patch("/pipeline/{merchant_id}/stage", response_model=StageTransitionResponse)
def update_stage(
    merchant_id: uuid.UUID,
    body: StageUpdateRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    machine: PipelineStateMachine = Depends(get_pipeline_state_machine),
):
    """
    Move a merchant along the pipeline.

    Flow:
    1. Validate the transition and persist stage + history
    2. On WON: create onboarding and the WON payout in the same transaction
    3. Commit, then record metrics and audit events
    """
    request_id = get_request_id(request)

    try:
        with unit_of_work(db):
            result = machine.transition_stage(
                merchant_id,
                actor,
                body.stage,
                notes=body.notes,
                next_action_description=body.next_action_description,
                next_action_date=body.next_action_date,
            )
    except (InvalidTransitionError, AlreadyInStageError) as e:
        rejected_transition_counter.labels(reason=e.code).inc()
        logging.warning(f"Stage change refused: {e}", extra={"request_id": request_id, "merchant_id": str(merchant_id)})
        raise

    previous, new = result.previous_stage.value, body.stage.value
    record_transition(previous, new)
    log_audit(
        "PIPELINE_STAGE_CHANGED",
        "pipeline",
        result.pipeline.id,
        actor.id,
        merchant_id=merchant_id,
        previous_stage=previous,
        new_stage=new,
        merchant_name=result.merchant.name,
    )

    payout_id = None
    if result.payout is not None:
        payout = result.payout.payout
        payout_id = payout.id
        record_payout(payout.type.value, result.payout.created)
        if result.payout.created:
            log_audit(
                "PAYOUT_CREATED",
                "payout",
                payout.id,
                actor.id,
                type=payout.type,
                amount=payout.amount,
                merchant_id=merchant_id,
                recipient_id=payout.recipient_id,
            )

    logging.info(
        "Pipeline stage updated",
        extra={
            "request_id": request_id,
            "merchant_id": str(merchant_id),
            "previous_stage": previous,
            "new_stage": new,
            "updated_by": str(actor.id),
        },
    )

    return StageTransitionResponse(
        pipeline=to_pipeline_response(result.pipeline, history_limit=5),
        previous_stage=result.previous_stage,
        onboarding_created=result.onboarding_created,
        payout_id=payout_id,
        message=f"Merchant moved to {new} stage successfully",
    )


@router.patch("/pipeline/{merchant_id}/next-action", response_model=PipelineResponse)
def update_next_action(
    merchant_id: uuid.UUID,
    body: NextActionUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    machine: PipelineStateMachine = Depends(get_pipeline_state_machine),
):
    with unit_of_work(db):
        pipeline = machine.update_next_action(
            merchant_id,
            actor,
            body.next_action_description,
            next_action_date=body.next_action_date,
        )

    log_audit(
        "PIPELINE_NEXT_ACTION_UPDATED",
        "pipeline",
        pipeline.id,
        actor.id,
        merchant_id=merchant_id,
        next_action_description=body.next_action_description,
        next_action_date=body.next_action_date,
    )
    return to_pipeline_response(pipeline)
