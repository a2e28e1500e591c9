"""Domain models - pure Python enums and dataclasses representing business entities"""

import enum
import uuid
from dataclasses import dataclass


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    REP = "REP"
    READ_ONLY = "READ_ONLY"


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class PipelineStage(str, enum.Enum):
    PENDING_FIRST_VISIT = "PENDING_FIRST_VISIT"
    FOLLOW_UP_NEEDED = "FOLLOW_UP_NEEDED"
    CONTRACT_SENT = "CONTRACT_SENT"
    WON = "WON"
    REJECTED = "REJECTED"


class OnboardingStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    READY_FOR_QA = "READY_FOR_QA"
    QA_FAILED = "QA_FAILED"
    LIVE = "LIVE"


class PayoutType(str, enum.Enum):
    WON = "WON"
    LIVE = "LIVE"


class MerchantCategory(str, enum.Enum):
    FOOD = "FOOD"
    BEAUTY = "BEAUTY"
    SPORTS = "SPORTS"
    DESSERTS_COFFEE = "DESSERTS_COFFEE"
    ELECTRONICS = "ELECTRONICS"
    FASHION = "FASHION"
    SERVICES = "SERVICES"
    RETAIL = "RETAIL"
    OTHER = "OTHER"


class ActivityType(str, enum.Enum):
    CALL = "CALL"
    MEETING = "MEETING"
    WHATSAPP = "WHATSAPP"
    EMAIL = "EMAIL"
    TRAINING = "TRAINING"
    OTHER = "OTHER"


class ActivityOutcome(str, enum.Enum):
    POSITIVE = "POSITIVE"
    NEUTRAL = "NEUTRAL"
    NEGATIVE = "NEGATIVE"
    FOLLOW_UP_NEEDED = "FOLLOW_UP_NEEDED"


@dataclass(frozen=True)
class Actor:
    """Authenticated user performing a request"""

    id: uuid.UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def can_write(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.REP)


@dataclass
class RequirementFlags:
    """The four onboarding checklist items"""

    survey_filled: bool = False
    offers_added: bool = False
    branches_covered: bool = False
    assets_complete: bool = False
