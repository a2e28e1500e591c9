"""Payout ledger - idempotent, append-only rep bonuses"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from merchant_crm.config import Settings
from merchant_crm.domain.models import Actor, PayoutType
from merchant_crm.infrastructure.database.models import PayoutLedger
from merchant_crm.infrastructure.database.repositories import PayoutRepository

logger = logging.getLogger(__name__)

PAYOUT_DESCRIPTIONS = {
    PayoutType.WON: "Bonus for merchant reaching Won stage",
    PayoutType.LIVE: "Bonus for merchant going Live",
}


@dataclass
class PayoutResult:
    """Ledger entry for a trigger and whether this call created it"""

    payout: PayoutLedger
    created: bool


class PayoutLedgerService:
    """Writes payouts inside the caller's transaction; never updates or deletes"""

    def __init__(self, db: Session, settings: Settings):
        self.payouts = PayoutRepository(db)
        self.settings = settings

    def amount_for(self, payout_type: PayoutType) -> float:
        if payout_type == PayoutType.WON:
            return self.settings.won_payout_amount
        return self.settings.live_payout_amount

    def create_payout(
        self,
        merchant_id: uuid.UUID,
        recipient_id: uuid.UUID,
        payout_type: PayoutType,
        created_by: uuid.UUID,
    ) -> PayoutResult:
        """
        Create the payout for (merchant, recipient, type) unless it exists.

        Amount comes from configuration. An existing entry is returned as-is.
        """
        existing = self.payouts.find(merchant_id, recipient_id, payout_type)
        if existing is not None:
            logger.info(
                f"{payout_type.value} payout already exists",
                extra={"merchant_id": str(merchant_id), "recipient_id": str(recipient_id)},
            )
            return PayoutResult(payout=existing, created=False)

        payout = self.payouts.create_payout(
            merchant_id=merchant_id,
            recipient_id=recipient_id,
            payout_type=payout_type,
            amount=self.amount_for(payout_type),
            description=PAYOUT_DESCRIPTIONS[payout_type],
            created_by_id=created_by,
        )
        return PayoutResult(payout=payout, created=True)

    def list_payouts(
        self,
        actor: Actor,
        merchant_id: Optional[uuid.UUID] = None,
        payout_type: Optional[PayoutType] = None,
    ) -> List[PayoutLedger]:
        """Admins see the whole ledger, everyone else only their own bonuses"""
        recipient_id = None if actor.is_admin else actor.id
        return self.payouts.list_payouts(
            recipient_id=recipient_id,
            merchant_id=merchant_id,
            payout_type=payout_type,
        )
