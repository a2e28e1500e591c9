"""Merchant registration, listing, profile updates, assignment and soft deletion endpoints"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from merchant_crm.api.dependencies import get_current_actor, get_merchant_service, get_request_id
from merchant_crm.api.v1.schemas import (
    AssignmentRequest,
    MerchantCreateRequest,
    MerchantListResponse,
    MerchantOverviewResponse,
    MerchantResponse,
    MerchantUpdateRequest,
)
from merchant_crm.domain.models import Actor, PipelineStage
from merchant_crm.infrastructure.database.models import Merchant
from merchant_crm.infrastructure.database.session import get_db, unit_of_work
from merchant_crm.infrastructure.observability.logging import log_audit
from merchant_crm.services.merchants import MerchantProfile, MerchantService
from merchant_crm.utils.date_utils import ensure_aware
from merchant_crm.utils.number_utils import percent

router = APIRouter()


def to_merchant_response(merchant: Merchant) -> MerchantResponse:
    return MerchantResponse(
        id=merchant.id,
        name=merchant.name,
        category=merchant.category,
        contact_person_name=merchant.contact_person_name,
        contact_phone=merchant.contact_phone,
        contact_email=merchant.contact_email,
        location=merchant.location,
        description=merchant.description,
        assigned_rep_id=merchant.assigned_rep_id,
        created_by_id=merchant.created_by_id,
        current_stage=merchant.pipeline.current_stage if merchant.pipeline else None,
        created_at=ensure_aware(merchant.created_at),
        deleted_at=ensure_aware(merchant.deleted_at),
    )


@router.post("/merchants", response_model=MerchantResponse, status_code=201)
def create_merchant(
    body: MerchantCreateRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    service: MerchantService = Depends(get_merchant_service),
):
    """Register a merchant; its pipeline starts at PENDING_FIRST_VISIT"""
    with unit_of_work(db):
        merchant = service.create_merchant(actor, MerchantProfile(**body.model_dump()))

    log_audit(
        "MERCHANT_CREATED",
        "merchant",
        merchant.id,
        actor.id,
        merchant_name=merchant.name,
        category=merchant.category,
        assigned_rep_id=merchant.assigned_rep_id,
    )
    logging.info(
        "Merchant created",
        extra={"request_id": get_request_id(request), "merchant_id": str(merchant.id), "user_id": str(actor.id)},
    )
    return to_merchant_response(merchant)


@router.get("/merchants", response_model=MerchantListResponse)
def list_merchants(
    stage: Optional[PipelineStage] = Query(None, description="Filter by pipeline stage"),
    limit: int = Query(50, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: MerchantService = Depends(get_merchant_service),
):
    """Merchants visible to the caller, newest first"""
    merchants = service.list_merchants(actor, stage=stage, limit=limit)
    return MerchantListResponse(
        merchants=[to_merchant_response(m) for m in merchants],
        total=len(merchants),
    )


@router.get("/merchants/stats/overview", response_model=MerchantOverviewResponse)
def get_merchant_overview(
    actor: Actor = Depends(get_current_actor),
    service: MerchantService = Depends(get_merchant_service),
):
    """Merchant counts by pipeline stage and category; reps see only their own"""
    overview = service.overview(actor)
    return MerchantOverviewResponse(
        total_merchants=overview.total_merchants,
        live_count=overview.live_count,
        conversion_rate=percent(overview.live_count, overview.total_merchants),
        pipeline_distribution={stage.value: count for stage, count in overview.pipeline_distribution.items()},
        category_distribution={
            category.value: count for category, count in overview.category_distribution.items()
        },
    )


@router.get("/merchants/{merchant_id}", response_model=MerchantResponse)
def get_merchant(
    merchant_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    service: MerchantService = Depends(get_merchant_service),
):
    return to_merchant_response(service.get_merchant(actor, merchant_id))


@router.put("/merchants/{merchant_id}", response_model=MerchantResponse)
def update_merchant(
    merchant_id: uuid.UUID,
    body: MerchantUpdateRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    service: MerchantService = Depends(get_merchant_service),
):
    """Change profile fields; a rep's assignedRepId is ignored"""
    changes = body.model_dump(exclude_unset=True)
    with unit_of_work(db):
        merchant = service.update_merchant(actor, merchant_id, changes)

    log_audit("MERCHANT_UPDATED", "merchant", merchant.id, actor.id, changes=sorted(changes))
    logging.info(
        "Merchant updated",
        extra={"request_id": get_request_id(request), "merchant_id": str(merchant.id), "user_id": str(actor.id)},
    )
    return to_merchant_response(merchant)


@router.patch("/merchants/{merchant_id}/assignment", response_model=MerchantResponse)
def assign_merchant(
    merchant_id: uuid.UUID,
    body: AssignmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    service: MerchantService = Depends(get_merchant_service),
):
    """Admin only: change (or clear) the responsible rep"""
    with unit_of_work(db):
        merchant = service.assign_rep(actor, merchant_id, body.assigned_rep_id)

    log_audit("MERCHANT_ASSIGNED", "merchant", merchant.id, actor.id, assigned_rep_id=merchant.assigned_rep_id)
    return to_merchant_response(merchant)


@router.delete("/merchants/{merchant_id}", response_model=MerchantResponse)
def delete_merchant(
    merchant_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    service: MerchantService = Depends(get_merchant_service),
):
    """Admin only: soft delete"""
    with unit_of_work(db):
        merchant = service.delete_merchant(actor, merchant_id)

    log_audit(
        "MERCHANT_DELETED",
        "merchant",
        merchant.id,
        actor.id,
        merchant_name=merchant.name,
        was_assigned_to=merchant.assigned_rep_id,
    )
    return to_merchant_response(merchant)
