"""Access-control gate for merchant-scoped reads and writes"""

import uuid

from sqlalchemy.orm import Session

from merchant_crm.domain.access import can_access
from merchant_crm.domain.exceptions import ForbiddenError, NotFoundError
from merchant_crm.domain.models import Actor, UserRole
from merchant_crm.infrastructure.database.models import Merchant
from merchant_crm.infrastructure.database.repositories import MerchantRepository


class AccessGate:
    """Decides whether an actor may see or change a merchant"""

    def __init__(self, db: Session):
        self.merchants = MerchantRepository(db)

    def can_access(self, actor_id: uuid.UUID, actor_role: UserRole, merchant_id: uuid.UUID) -> bool:
        """False for missing or soft-deleted merchants whatever the role"""
        merchant = self.merchants.get_active(merchant_id)
        if merchant is None:
            return False
        return can_access(actor_id, actor_role, merchant.assigned_rep_id)

    def require_merchant(self, actor: Actor, merchant_id: uuid.UUID, write: bool = False) -> Merchant:
        """
        Load a merchant the actor is allowed to work on.

        Raises:
            NotFoundError: merchant missing or soft-deleted
            ForbiddenError: not assigned to the actor, or a read-only actor asked to write
        """
        merchant = self.merchants.get_active(merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant not found")

        if write and not actor.can_write:
            raise ForbiddenError("Read-only users cannot modify merchants")

        if not self.can_access(actor.id, actor.role, merchant.id):
            raise ForbiddenError("Access denied to this merchant")

        return merchant
