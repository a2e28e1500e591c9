"""Dependency injection for FastAPI endpoints"""

import uuid
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from merchant_crm.config import Settings, get_settings
from merchant_crm.domain.exceptions import UnauthenticatedError
from merchant_crm.domain.models import Actor, UserStatus
from merchant_crm.infrastructure.database.repositories import UserRepository
from merchant_crm.infrastructure.database.session import get_db
from merchant_crm.services.activities import ActivityService
from merchant_crm.services.merchants import MerchantService
from merchant_crm.services.onboarding import OnboardingEngine
from merchant_crm.services.payouts import PayoutLedgerService
from merchant_crm.services.pipeline import PipelineStateMachine


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Actor:
    """Resolve the calling user from X-User-Id; role is taken from the user record"""
    if not x_user_id:
        raise UnauthenticatedError("Access denied. No user identity provided.")
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        raise UnauthenticatedError("Access denied. Invalid user identity.")

    user = UserRepository(db).get_by_id(user_id)
    if user is None:
        raise UnauthenticatedError("Access denied. User not found.")
    if user.status != UserStatus.ACTIVE:
        raise UnauthenticatedError("Access denied. Account is inactive.")
    return Actor(id=user.id, role=user.role)


def get_merchant_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> MerchantService:
    return MerchantService(db, settings)


def get_pipeline_state_machine(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> PipelineStateMachine:
    return PipelineStateMachine(db, settings)


def get_onboarding_engine(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OnboardingEngine:
    return OnboardingEngine(db, settings)


def get_payout_ledger(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> PayoutLedgerService:
    return PayoutLedgerService(db, settings)


def get_activity_service(db: Session = Depends(get_db)) -> ActivityService:
    return ActivityService(db)
