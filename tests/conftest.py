"""Pytest fixtures for testing"""

import pytest
from typing import Callable, Dict, Generator, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from merchant_crm.api.main import create_app
from merchant_crm.config import Settings, get_settings
from merchant_crm.domain.models import Actor, MerchantCategory, PipelineStage, UserRole, UserStatus
from merchant_crm.infrastructure.database.models import Base, Merchant, User
from merchant_crm.infrastructure.database.repositories import UserRepository
from merchant_crm.infrastructure.database.session import get_db, unit_of_work
from merchant_crm.services.merchants import MerchantProfile, MerchantService
from merchant_crm.services.pipeline import PipelineStateMachine


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at the test database with the default payout amounts"""
    return Settings(database_url=TEST_DATABASE_URL, won_payout_amount=9.0, live_payout_amount=7.0)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session, settings: Settings) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app(settings)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    return TestClient(app)


def _make_user(db: Session, email: str, role: UserRole) -> User:
    user = UserRepository(db).create_user(email=email, name=email.split("@")[0], role=role)
    db.commit()
    return user


@pytest.fixture
def admin(db: Session) -> User:
    return _make_user(db, "admin@example.com", UserRole.ADMIN)


@pytest.fixture
def rep(db: Session) -> User:
    return _make_user(db, "rep@example.com", UserRole.REP)


@pytest.fixture
def other_rep(db: Session) -> User:
    return _make_user(db, "other.rep@example.com", UserRole.REP)


@pytest.fixture
def viewer(db: Session) -> User:
    return _make_user(db, "viewer@example.com", UserRole.READ_ONLY)


@pytest.fixture
def inactive_rep(db: Session) -> User:
    user = _make_user(db, "gone@example.com", UserRole.REP)
    user.status = UserStatus.INACTIVE
    db.commit()
    return user


def actor_for(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


def auth(user: User) -> Dict[str, str]:
    """Request headers identifying ``user``"""
    return {"X-User-Id": str(user.id)}


@pytest.fixture
def make_merchant(db: Session, settings: Settings, admin: User) -> Callable[..., Merchant]:
    """Factory registering a merchant (as admin) assigned to ``rep``"""

    def _make(assigned_to: Optional[User] = None, name: str = "Cafe Nero") -> Merchant:
        profile = MerchantProfile(
            name=name,
            category=MerchantCategory.DESSERTS_COFFEE,
            contact_person_name="Lina Haddad",
            contact_phone="+962790000000",
            location="Rainbow Street, Amman",
            assigned_rep_id=assigned_to.id if assigned_to else None,
        )
        with unit_of_work(db):
            merchant = MerchantService(db, settings).create_merchant(actor_for(admin), profile)
        return merchant

    return _make


@pytest.fixture
def advance_to(db: Session, settings: Settings, admin: User) -> Callable[[Merchant, PipelineStage], None]:
    """Walk a merchant along the happy path up to ``target`` (as admin)"""
    happy_path = [
        PipelineStage.FOLLOW_UP_NEEDED,
        PipelineStage.CONTRACT_SENT,
        PipelineStage.WON,
    ]

    def _advance(merchant: Merchant, target: PipelineStage) -> None:
        machine = PipelineStateMachine(db, settings)
        for stage in happy_path:
            with unit_of_work(db):
                machine.transition_stage(merchant.id, actor_for(admin), stage)
            if stage == target:
                return

    return _advance
