"""Access rules for merchant-scoped operations"""

import uuid
from typing import Optional

from merchant_crm.domain.models import UserRole


def can_access(actor_id: uuid.UUID, actor_role: UserRole, assigned_rep_id: Optional[uuid.UUID]) -> bool:
    """Admins see every merchant; everyone else only the merchants assigned to them"""
    if actor_role == UserRole.ADMIN:
        return True
    return assigned_rep_id is not None and assigned_rep_id == actor_id
