"""Onboarding endpoints - checklist updates, admin status override, the QA queue and progress stats"""

import logging
import uuid

from fastapi import APIRouter, Depends, Request
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from merchant_crm.api.dependencies import get_current_actor, get_onboarding_engine, get_request_id
from merchant_crm.api.v1.schemas import (
    OnboardingResponse,
    OnboardingStatusRequest,
    OnboardingUpdateRequest,
    OnboardingUpdateResponse,
    OnboardingProgressResponse,
    PendingQAItem,
    PendingQAResponse,
    RequirementItem,
    RequirementProgress,
    StatusShare,
)
from merchant_crm.domain.models import Actor
from merchant_crm.domain.onboarding import REQUIREMENT_DESCRIPTIONS, REQUIREMENT_WEIGHTS, all_requirements_met
from merchant_crm.domain.pipeline import days_past_due
from merchant_crm.infrastructure.database.models import Onboarding
from merchant_crm.infrastructure.database.repositories import OnboardingRepository
from merchant_crm.infrastructure.database.session import get_db, unit_of_work
from merchant_crm.infrastructure.observability.logging import log_audit
from merchant_crm.infrastructure.observability.metrics import onboarding_live_counter, record_payout
from merchant_crm.services.onboarding import OnboardingEngine, OnboardingUpdateResult
from merchant_crm.utils.date_utils import ensure_aware, utcnow
from merchant_crm.utils.number_utils import percent, ratio_to_percent

router = APIRouter()


def to_onboarding_response(onboarding: Onboarding) -> OnboardingResponse:
    flags = onboarding.requirements
    requirements_met = all_requirements_met(flags)
    return OnboardingResponse(
        id=onboarding.id,
        merchant_id=onboarding.merchant_id,
        status=onboarding.status,
        survey_filled=onboarding.survey_filled,
        offers_added=onboarding.offers_added,
        branches_covered=onboarding.branches_covered,
        assets_complete=onboarding.assets_complete,
        completion_percentage=onboarding.completion_percentage,
        qa_approved=onboarding.qa_approved,
        qa_notes=onboarding.qa_notes,
        internal_notes=onboarding.internal_notes,
        live_date=ensure_aware(onboarding.live_date),
        all_requirements_met=requirements_met,
        can_go_live=requirements_met and onboarding.qa_approved is True,
        requirement_breakdown={
            to_camel(name): RequirementItem(
                completed=getattr(flags, name),
                weight=weight,
                description=REQUIREMENT_DESCRIPTIONS[name],
            )
            for name, weight in REQUIREMENT_WEIGHTS.items()
        },
        updated_at=ensure_aware(onboarding.updated_at),
    )


def _report_update(
    action: str,
    result: OnboardingUpdateResult,
    actor: Actor,
    request_id: str,
    **details,
) -> OnboardingUpdateResponse:
    """Post-commit metrics, audit events and response body shared by both update paths"""
    onboarding = result.onboarding
    merchant_id = result.merchant.id

    log_audit(
        action,
        "onboarding",
        onboarding.id,
        actor.id,
        merchant_id=merchant_id,
        merchant_name=result.merchant.name,
        previous_status=result.previous_status,
        new_status=onboarding.status,
        **details,
    )

    payout_id = None
    if result.went_live:
        onboarding_live_counter.inc()
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
        "Onboarding updated",
        extra={
            "request_id": request_id,
            "merchant_id": str(merchant_id),
            "previous_status": result.previous_status.value,
            "new_status": onboarding.status.value,
            "went_live": result.went_live,
            "updated_by": str(actor.id),
        },
    )

    if result.went_live and payout_id is not None:
        message = "Merchant is now LIVE! Payout has been created."
    elif result.went_live:
        message = "Merchant is now LIVE!"
    else:
        message = "Onboarding updated successfully"

    return OnboardingUpdateResponse(
        onboarding=to_onboarding_response(onboarding),
        previous_status=result.previous_status,
        went_live=result.went_live,
        qa_update_ignored=result.qa_update_ignored,
        payout_id=payout_id,
        message=message,
    )


@router.get("/onboarding/pending-qa", response_model=PendingQAResponse)
def get_pending_qa(
    actor: Actor = Depends(get_current_actor),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    """Admin only: checklists waiting for a QA verdict, oldest first"""
    now = utcnow()
    items = []
    for onboarding in engine.list_pending_qa(actor):
        ready_since = ensure_aware(onboarding.updated_at)
        items.append(
            PendingQAItem(
                merchant_id=onboarding.merchant_id,
                merchant_name=onboarding.merchant.name,
                completion_percentage=ratio_to_percent(onboarding.completion_percentage),
                ready_for_qa_date=ready_since,
                days_pending=days_past_due(ready_since, now),
            )
        )
    return PendingQAResponse(items=items, total=len(items))


@router.get("/onboarding/stats/progress", response_model=OnboardingProgressResponse)
def get_onboarding_progress(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Checklists per status and how far each requirement has got; reps see only their own"""
    rep_scope = None if actor.is_admin else actor.id
    repository = OnboardingRepository(db)
    breakdown = repository.status_breakdown(assigned_rep_id=rep_scope)
    checklists, ticked = repository.requirement_totals(assigned_rep_id=rep_scope)

    total = sum(count for count, _ in breakdown.values())
    return OnboardingProgressResponse(
        total=total,
        status_distribution={
            status.value: StatusShare(
                count=count,
                percentage=percent(count, total),
                avg_completion=ratio_to_percent(average),
            )
            for status, (count, average) in breakdown.items()
        },
        requirement_completion={
            to_camel(name): RequirementProgress(
                completed=ticked[name],
                total=checklists,
                percentage=percent(ticked[name], checklists),
            )
            for name in REQUIREMENT_WEIGHTS
        },
    )


@router.get("/onboarding/{merchant_id}", response_model=OnboardingResponse)
def get_onboarding(
    merchant_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    return to_onboarding_response(engine.get_onboarding(merchant_id, actor))


@router.patch("/onboarding/{merchant_id}", response_model=OnboardingUpdateResponse)
def update_onboarding(
    merchant_id: uuid.UUID,
    body: OnboardingUpdateRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    """
    Update checklist flags and QA fields; status is re-derived.

    Going LIVE for the first time creates the LIVE payout in the same
    transaction. QA verdicts from non-admins are ignored.
    """
    patch = body.model_dump(exclude_unset=True)
    with unit_of_work(db):
        result = engine.update_requirements(merchant_id, actor, patch)

    return _report_update(
        "ONBOARDING_UPDATED",
        result,
        actor,
        get_request_id(request),
        changes=sorted(patch),
        completion_percentage=result.onboarding.completion_percentage,
    )


@router.patch("/onboarding/{merchant_id}/status", response_model=OnboardingUpdateResponse)
def update_onboarding_status(
    merchant_id: uuid.UUID,
    body: OnboardingStatusRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    engine: OnboardingEngine = Depends(get_onboarding_engine),
):
    """Admin only: force a status"""
    with unit_of_work(db):
        result = engine.update_status(merchant_id, actor, body.status, notes=body.notes)

    return _report_update(
        "ONBOARDING_STATUS_CHANGED",
        result,
        actor,
        get_request_id(request),
        notes=body.notes,
    )
