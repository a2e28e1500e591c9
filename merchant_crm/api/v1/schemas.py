"""Pydantic schemas for API request/response validation"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from merchant_crm.domain.models import (
    ActivityOutcome,
    ActivityType,
    MerchantCategory,
    OnboardingStatus,
    PayoutType,
    PipelineStage,
)


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Merchants


class MerchantCreateRequest(CamelModel):
    """Request body for POST /merchants"""

    name: str = Field(..., min_length=2, max_length=100)
    category: MerchantCategory
    contact_person_name: str = Field(..., min_length=2, max_length=100)
    contact_phone: str = Field(..., max_length=20, pattern=r"^\+?[1-9]\d{1,14}$")
    contact_email: Optional[EmailStr] = None
    location: str = Field(..., min_length=5, max_length=200)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    assigned_rep_id: Optional[uuid.UUID] = None


class MerchantUpdateRequest(CamelModel):
    """Request body for PUT /merchants/{merchant_id}; only the fields sent are changed"""

    name: Optional[str] = Field(None, min_length=2, max_length=100)
    category: Optional[MerchantCategory] = None
    contact_person_name: Optional[str] = Field(None, min_length=2, max_length=100)
    contact_phone: Optional[str] = Field(None, max_length=20, pattern=r"^\+?[1-9]\d{1,14}$")
    contact_email: Optional[EmailStr] = None
    location: Optional[str] = Field(None, min_length=5, max_length=200)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    assigned_rep_id: Optional[uuid.UUID] = None


class AssignmentRequest(CamelModel):
    """Request body for PATCH /merchants/{merchant_id}/assignment"""

    assigned_rep_id: Optional[uuid.UUID] = None


class MerchantResponse(CamelModel):
    id: uuid.UUID
    name: str
    category: MerchantCategory
    contact_person_name: str
    contact_phone: str
    contact_email: Optional[str] = None
    location: str
    description: Optional[str] = None
    assigned_rep_id: Optional[uuid.UUID] = None
    created_by_id: uuid.UUID
    current_stage: Optional[PipelineStage] = None
    created_at: datetime
    deleted_at: Optional[datetime] = None


class MerchantListResponse(CamelModel):
    merchants: List[MerchantResponse]
    total: int


class MerchantOverviewResponse(CamelModel):
    """Response for GET /merchants/stats/overview"""

    total_merchants: int
    live_count: int
    conversion_rate: int
    pipeline_distribution: Dict[str, int]
    category_distribution: Dict[str, int]


# Pipeline


class StageUpdateRequest(CamelModel):
    """Request body for PATCH /pipeline/{merchant_id}/stage"""

    stage: PipelineStage
    notes: Optional[str] = Field(None, max_length=1000)
    next_action_description: Optional[str] = Field(None, max_length=500)
    next_action_date: Optional[datetime] = None


class NextActionUpdateRequest(CamelModel):
    """Request body for PATCH /pipeline/{merchant_id}/next-action"""

    next_action_description: str = Field(..., min_length=1, max_length=500)
    next_action_date: Optional[datetime] = None


class StageHistoryItem(CamelModel):
    stage: PipelineStage
    previous_stage: Optional[PipelineStage] = None
    changed_by_id: uuid.UUID
    notes: Optional[str] = None
    created_at: datetime


class PipelineResponse(CamelModel):
    id: uuid.UUID
    merchant_id: uuid.UUID
    current_stage: PipelineStage
    next_action_description: Optional[str] = None
    next_action_date: Optional[datetime] = None
    last_updated_by_id: Optional[uuid.UUID] = None
    is_overdue: bool
    possible_stages: List[PipelineStage]
    stage_history: List[StageHistoryItem] = []
    updated_at: datetime


class StageTransitionResponse(CamelModel):
    """Response for PATCH /pipeline/{merchant_id}/stage"""

    pipeline: PipelineResponse
    previous_stage: PipelineStage
    onboarding_created: bool = False
    payout_id: Optional[uuid.UUID] = None
    message: str


class OverdueItem(CamelModel):
    merchant_id: uuid.UUID
    merchant_name: str
    current_stage: PipelineStage
    next_action_description: Optional[str] = None
    next_action_date: datetime
    days_past_due: int


class OverdueResponse(CamelModel):
    items: List[OverdueItem]
    total: int


class StageShare(CamelModel):
    count: int
    percentage: int


class ConversionRates(CamelModel):
    won_rate: int
    live_rate: int
    overall_rate: int


class ConversionStatsResponse(CamelModel):
    """Response for GET /pipeline/stats/conversion"""

    total_merchants: int
    active_merchants: int
    won_count: int
    live_count: int
    rejected_count: int
    conversion_rates: ConversionRates
    stage_distribution: Dict[str, StageShare]


# Onboarding


class OnboardingUpdateRequest(CamelModel):
    """Request body for PATCH /onboarding/{merchant_id}"""

    survey_filled: Optional[bool] = None
    offers_added: Optional[bool] = None
    branches_covered: Optional[bool] = None
    assets_complete: Optional[bool] = None
    qa_approved: Optional[bool] = None
    qa_notes: Optional[str] = Field(None, max_length=1000)
    internal_notes: Optional[str] = Field(None, max_length=1000)


class OnboardingStatusRequest(CamelModel):
    """Request body for PATCH /onboarding/{merchant_id}/status"""

    status: OnboardingStatus
    notes: Optional[str] = Field(None, max_length=1000)


class RequirementItem(CamelModel):
    completed: bool
    weight: float
    description: str


class OnboardingResponse(CamelModel):
    id: uuid.UUID
    merchant_id: uuid.UUID
    status: OnboardingStatus
    survey_filled: bool
    offers_added: bool
    branches_covered: bool
    assets_complete: bool
    completion_percentage: float
    qa_approved: Optional[bool] = None
    qa_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    live_date: Optional[datetime] = None
    all_requirements_met: bool
    can_go_live: bool
    requirement_breakdown: Dict[str, RequirementItem]
    updated_at: datetime


class OnboardingUpdateResponse(CamelModel):
    onboarding: OnboardingResponse
    previous_status: OnboardingStatus
    went_live: bool
    qa_update_ignored: bool = False
    payout_id: Optional[uuid.UUID] = None
    message: str


class PendingQAItem(CamelModel):
    merchant_id: uuid.UUID
    merchant_name: str
    completion_percentage: int
    ready_for_qa_date: datetime
    days_pending: int


class PendingQAResponse(CamelModel):
    items: List[PendingQAItem]
    total: int


class StatusShare(CamelModel):
    count: int
    percentage: int
    avg_completion: int


class RequirementProgress(CamelModel):
    completed: int
    total: int
    percentage: int


class OnboardingProgressResponse(CamelModel):
    """Response for GET /onboarding/stats/progress"""

    total: int
    status_distribution: Dict[str, StatusShare]
    requirement_completion: Dict[str, RequirementProgress]


# Payouts


class PayoutResponse(CamelModel):
    id: uuid.UUID
    merchant_id: uuid.UUID
    recipient_id: uuid.UUID
    type: PayoutType
    amount: float
    description: Optional[str] = None
    status: str
    created_by_id: uuid.UUID
    created_at: datetime


class PayoutListResponse(CamelModel):
    payouts: List[PayoutResponse]
    total: int
    total_amount: float


# Activities


class ActivityCreateRequest(CamelModel):
    """Request body for POST /activities"""

    merchant_id: uuid.UUID
    type: ActivityType
    summary: str = Field(..., min_length=5, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    outcome: Optional[ActivityOutcome] = None
    duration_minutes: Optional[int] = Field(None, alias="duration", ge=1, le=480)
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None


class ActivityUpdateRequest(CamelModel):
    """Request body for PUT /activities/{activity_id}; only the fields sent are changed"""

    type: Optional[ActivityType] = None
    summary: Optional[str] = Field(None, min_length=5, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    outcome: Optional[ActivityOutcome] = None
    duration_minutes: Optional[int] = Field(None, alias="duration", ge=1, le=480)
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None


class ActivityResponse(CamelModel):
    id: uuid.UUID
    merchant_id: uuid.UUID
    merchant_name: str
    type: ActivityType
    summary: str
    description: Optional[str] = None
    outcome: Optional[ActivityOutcome] = None
    duration_minutes: Optional[int] = Field(None, alias="duration")
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    created_by_id: uuid.UUID
    created_at: datetime
    updated_at: datetime


class PageMeta(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class ActivityListResponse(CamelModel):
    activities: List[ActivityResponse]
    meta: PageMeta


class ActivityDeleteResponse(CamelModel):
    id: uuid.UUID
    deleted_at: datetime
    message: str


class ActivitySummaryResponse(CamelModel):
    """Response for GET /activities/stats/summary"""

    total_activities: int
    recent_activities: int
    avg_activities_per_merchant: float
    type_distribution: Dict[str, int]
    outcome_distribution: Dict[str, int]


class RepInfo(CamelModel):
    id: uuid.UUID
    name: str
    email: str


class ReportPeriod(CamelModel):
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class RepMetrics(CamelModel):
    total_activities: int
    assigned_merchants: int
    avg_activities_per_merchant: float


class RepBreakdown(CamelModel):
    by_type: Dict[str, int]
    by_outcome: Dict[str, int]


class RepPerformanceResponse(CamelModel):
    """Response for GET /activities/rep/{rep_id}/performance"""

    rep: RepInfo
    period: ReportPeriod
    metrics: RepMetrics
    breakdown: RepBreakdown
