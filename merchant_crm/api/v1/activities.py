"""Activity log endpoints - logging, editing and reporting on merchant touchpoints"""

import logging
import math
import uuid
from datetime import datetime
from typing import List, Literal, Optional, Tuple

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from merchant_crm.api.dependencies import get_activity_service, get_current_actor, get_request_id
from merchant_crm.api.v1.schemas import (
    ActivityCreateRequest,
    ActivityDeleteResponse,
    ActivityListResponse,
    ActivityResponse,
    ActivitySummaryResponse,
    ActivityUpdateRequest,
    PageMeta,
    RepBreakdown,
    RepInfo,
    RepMetrics,
    RepPerformanceResponse,
    ReportPeriod,
)
from merchant_crm.domain.models import Actor, ActivityOutcome, ActivityType
from merchant_crm.infrastructure.database.models import Activity
from merchant_crm.infrastructure.database.session import get_db, unit_of_work
from merchant_crm.infrastructure.observability.logging import log_audit
from merchant_crm.infrastructure.observability.metrics import activity_logged_counter
from merchant_crm.services.activities import ActivityDraft, ActivityFilters, ActivityService
from merchant_crm.utils.date_utils import ensure_aware

router = APIRouter()

SortField = Literal["createdAt", "scheduledDate", "completedDate", "type", "outcome"]


def to_activity_response(activity: Activity) -> ActivityResponse:
    return ActivityResponse(
        id=activity.id,
        merchant_id=activity.merchant_id,
        merchant_name=activity.merchant.name,
        type=activity.type,
        summary=activity.summary,
        description=activity.description,
        outcome=activity.outcome,
        duration_minutes=activity.duration_minutes,
        scheduled_date=ensure_aware(activity.scheduled_date),
        completed_date=ensure_aware(activity.completed_date),
        created_by_id=activity.created_by_id,
        created_at=ensure_aware(activity.created_at),
        updated_at=ensure_aware(activity.updated_at),
    )


def _page(result: Tuple[List[Activity], int], page: int, limit: int) -> ActivityListResponse:
    activities, total = result
    total_pages = math.ceil(total / limit)
    return ActivityListResponse(
        activities=[to_activity_response(a) for a in activities],
        meta=PageMeta(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )


@router.get("/activities", response_model=ActivityListResponse)
def list_activities(
    merchant_id: Optional[uuid.UUID] = Query(None, alias="merchantId"),
    activity_type: Optional[ActivityType] = Query(None, alias="type"),
    outcome: Optional[ActivityOutcome] = Query(None),
    created_by_id: Optional[uuid.UUID] = Query(None, alias="createdById", description="Admins only"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    search: Optional[str] = Query(None, max_length=255, description="Matches summary or description"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: SortField = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    actor: Actor = Depends(get_current_actor),
    service: ActivityService = Depends(get_activity_service),
):
    """Activities on merchants visible to the caller, newest first by default"""
    filters = ActivityFilters(
        merchant_id=merchant_id,
        activity_type=activity_type,
        outcome=outcome,
        created_by_id=created_by_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    result = service.list_activities(
        actor, filters, page=page, limit=limit, sort_by=sort_by, descending=sort_order == "desc"
    )
    return _page(result, page, limit)


@router.post("/activities", response_model=ActivityResponse, status_code=201)
def create_activity(
    body: ActivityCreateRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    service: ActivityService = Depends(get_activity_service),
):
    """Log a touchpoint; without any date it is recorded as completed now"""
    with unit_of_work(db):
        activity = service.create_activity(actor, ActivityDraft(**body.model_dump()))

    activity_logged_counter.labels(type=activity.type.value).inc()
    log_audit(
        "ACTIVITY_CREATED",
        "activity",
        activity.id,
        actor.id,
        merchant_id=activity.merchant_id,
        merchant_name=activity.merchant.name,
        activity_type=activity.type,
        summary=activity.summary,
    )
    logging.info(
        "Activity created",
        extra={
            "request_id": get_request_id(request),
            "activity_id": str(activity.id),
            "merchant_id": str(activity.merchant_id),
            "user_id": str(actor.id),
        },
    )
    return to_activity_response(activity)


@router.get("/activities/stats/summary", response_model=ActivitySummaryResponse)
def get_activity_summary(
    actor: Actor = Depends(get_current_actor),
    service: ActivityService = Depends(get_activity_service),
):
    """Totals, last-30-day count and distributions; reps see only their merchants"""
    summary = service.summary(actor)
    return ActivitySummaryResponse(
        total_activities=summary.total_activities,
        recent_activities=summary.recent_activities,
        avg_activities_per_merchant=summary.avg_activities_per_merchant,
        type_distribution={t.value: count for t, count in summary.type_distribution.items()},
        outcome_distribution={o.value: count for o, count in summary.outcome_distribution.items()},
    )


@router.get("/activities/merchant/{merchant_id}", response_model=ActivityListResponse)
def list_merchant_activities(
    merchant_id: uuid.UUID,
    activity_type: Optional[ActivityType] = Query(None, alias="type"),
    outcome: Optional[ActivityOutcome] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: ActivityService = Depends(get_activity_service),
):
    filters = ActivityFilters(activity_type=activity_type, outcome=outcome)
    result = service.list_for_merchant(actor, merchant_id, filters, page=page, limit=limit)
    return _page(result, page, limit)


@router.get("/activities/rep/{rep_id}/performance", response_model=RepPerformanceResponse)
def get_rep_performance(
    rep_id: uuid.UUID,
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    actor: Actor = Depends(get_current_actor),
    service: ActivityService = Depends(get_activity_service),
):
    """Admin only: one rep's logged activities against their assigned merchants"""
    performance = service.rep_performance(actor, rep_id, date_from=date_from, date_to=date_to)
    rep = performance.rep
    return RepPerformanceResponse(
        rep=RepInfo(id=rep.id, name=rep.name, email=rep.email),
        period=ReportPeriod(date_from=performance.date_from, date_to=performance.date_to),
        metrics=RepMetrics(
            total_activities=performance.total_activities,
            assigned_merchants=performance.assigned_merchants,
            avg_activities_per_merchant=performance.avg_activities_per_merchant,
        ),
        breakdown=RepBreakdown(
            by_type={t.value: count for t, count in performance.by_type.items()},
            by_outcome={o.value: count for o, count in performance.by_outcome.items()},
        ),
    )


@router.get("/activities/{activity_id}", response_model=ActivityResponse)
def get_activity(
    activity_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    service: ActivityService = Depends(get_activity_service),
):
    return to_activity_response(service.get_activity(actor, activity_id))


@router.put("/activities/{activity_id}", response_model=ActivityResponse)
def update_activity(
    activity_id: uuid.UUID,
    body: ActivityUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    service: ActivityService = Depends(get_activity_service),
):
    """Admins edit any activity; reps their own on merchants still assigned to them"""
    changes = body.model_dump(exclude_unset=True)
    with unit_of_work(db):
        activity = service.update_activity(actor, activity_id, changes)

    log_audit(
        "ACTIVITY_UPDATED",
        "activity",
        activity.id,
        actor.id,
        merchant_id=activity.merchant_id,
        merchant_name=activity.merchant.name,
        changes=sorted(changes),
    )
    return to_activity_response(activity)


@router.delete("/activities/{activity_id}", response_model=ActivityDeleteResponse)
def delete_activity(
    activity_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    service: ActivityService = Depends(get_activity_service),
):
    """Soft delete under the same rules as editing"""
    with unit_of_work(db):
        activity = service.delete_activity(actor, activity_id)

    log_audit(
        "ACTIVITY_DELETED",
        "activity",
        activity.id,
        actor.id,
        merchant_id=activity.merchant_id,
        merchant_name=activity.merchant.name,
        activity_type=activity.type,
        summary=activity.summary,
    )
    return ActivityDeleteResponse(
        id=activity.id,
        deleted_at=ensure_aware(activity.deleted_at),
        message="Activity deleted successfully",
    )
