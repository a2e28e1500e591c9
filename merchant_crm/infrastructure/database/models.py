"""SQLAlchemy ORM models for merchants, pipeline, onboarding, payouts and activities"""

import uuid
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

from merchant_crm.domain.models import (
    ActivityOutcome,
    ActivityType,
    MerchantCategory,
    OnboardingStatus,
    PayoutType,
    PipelineStage,
    RequirementFlags,
    UserRole,
    UserStatus,
)
from merchant_crm.utils.date_utils import utcnow

Base = declarative_base()


class User(Base):
    """Admin, sales rep or read-only user"""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.REP)
    status = Column(Enum(UserStatus, name="user_status"), nullable=False, default=UserStatus.ACTIVE)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Merchant(Base):
    """Merchant profile; soft-deleted via deleted_at"""

    __tablename__ = "merchants"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    category = Column(Enum(MerchantCategory, name="merchant_category"), nullable=False)
    contact_person_name = Column(String(100), nullable=False)
    contact_phone = Column(String(20), nullable=False)
    contact_email = Column(String(255), nullable=True)
    location = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    assigned_rep_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    created_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    assigned_rep = relationship("User", foreign_keys=[assigned_rep_id])
    pipeline = relationship("Pipeline", back_populates="merchant", uselist=False, cascade="all, delete-orphan")
    onboarding = relationship("Onboarding", back_populates="merchant", uselist=False, cascade="all, delete-orphan")
    activities = relationship("Activity", back_populates="merchant", cascade="all, delete-orphan")


class Pipeline(Base):
    """Sales pipeline position of a merchant"""

    __tablename__ = "pipelines"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(
        Uuid(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    current_stage = Column(Enum(PipelineStage, name="pipeline_stage"), nullable=False, index=True)
    next_action_description = Column(String(500), nullable=True)
    next_action_date = Column(DateTime(timezone=True), nullable=True)
    last_updated_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    merchant = relationship("Merchant", back_populates="pipeline")
    stage_history = relationship(
        "PipelineStageHistory",
        back_populates="pipeline",
        cascade="all, delete-orphan",
        order_by="PipelineStageHistory.created_at.desc()",
    )

    __mapper_args__ = {"version_id_col": version}


class PipelineStageHistory(Base):
    """Append-only log of stage changes"""

    __tablename__ = "pipeline_stage_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pipeline_id = Column(Uuid(as_uuid=True), ForeignKey("pipelines.id", ondelete="CASCADE"), nullable=False)
    stage = Column(Enum(PipelineStage, name="pipeline_stage"), nullable=False)
    previous_stage = Column(Enum(PipelineStage, name="pipeline_stage"), nullable=True)
    changed_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    pipeline = relationship("Pipeline", back_populates="stage_history")


class Onboarding(Base):
    """Post-Won onboarding checklist"""

    __tablename__ = "onboardings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(
        Uuid(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    status = Column(
        Enum(OnboardingStatus, name="onboarding_status"), nullable=False, default=OnboardingStatus.IN_PROGRESS
    )
    survey_filled = Column(Boolean, nullable=False, default=False)
    offers_added = Column(Boolean, nullable=False, default=False)
    branches_covered = Column(Boolean, nullable=False, default=False)
    assets_complete = Column(Boolean, nullable=False, default=False)
    completion_percentage = Column(Float, nullable=False, default=0.0)
    qa_approved = Column(Boolean, nullable=True)
    qa_notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)
    live_date = Column(DateTime(timezone=True), nullable=True)
    created_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    last_updated_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    merchant = relationship("Merchant", back_populates="onboarding")

    __mapper_args__ = {"version_id_col": version}

    @property
    def requirements(self) -> RequirementFlags:
        return RequirementFlags(
            survey_filled=self.survey_filled,
            offers_added=self.offers_added,
            branches_covered=self.branches_covered,
            assets_complete=self.assets_complete,
        )


class PayoutLedger(Base):
    """Rep bonus entry; append-only"""

    __tablename__ = "payout_ledger"
    __table_args__ = (
        UniqueConstraint("merchant_id", "recipient_id", "type", name="uq_payout_merchant_recipient_type"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(Uuid(as_uuid=True), ForeignKey("merchants.id"), nullable=False, index=True)
    recipient_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(Enum(PayoutType, name="payout_type"), nullable=False)
    amount = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="PENDING")
    created_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Activity(Base):
    """Logged touchpoint with a merchant (call, visit, message, ...); soft-deleted via deleted_at"""

    __tablename__ = "activities"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(
        Uuid(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(Enum(ActivityType, name="activity_type"), nullable=False)
    summary = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    outcome = Column(Enum(ActivityOutcome, name="activity_outcome"), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    scheduled_date = Column(DateTime(timezone=True), nullable=True)
    completed_date = Column(DateTime(timezone=True), nullable=True)
    created_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    merchant = relationship("Merchant", back_populates="activities")
    created_by = relationship("User", foreign_keys=[created_by_id])
