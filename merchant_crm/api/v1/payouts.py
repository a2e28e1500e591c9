"""GET /payouts - read-only view of the payout ledger"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query

from merchant_crm.api.dependencies import get_current_actor, get_payout_ledger
from merchant_crm.api.v1.schemas import PayoutListResponse, PayoutResponse
from merchant_crm.domain.models import Actor, PayoutType
from merchant_crm.services.payouts import PayoutLedgerService
from merchant_crm.utils.date_utils import ensure_aware

router = APIRouter()


@router.get("/payouts", response_model=PayoutListResponse)
def list_payouts(
    merchant_id: Optional[uuid.UUID] = Query(None, alias="merchantId"),
    payout_type: Optional[PayoutType] = Query(None, alias="type"),
    actor: Actor = Depends(get_current_actor),
    ledger: PayoutLedgerService = Depends(get_payout_ledger),
):
    """
    List payouts, newest first.

    Reps only ever see payouts where they are the recipient.
    """
    payouts = ledger.list_payouts(actor, merchant_id=merchant_id, payout_type=payout_type)
    items = [
        PayoutResponse(
            id=p.id,
            merchant_id=p.merchant_id,
            recipient_id=p.recipient_id,
            type=p.type,
            amount=p.amount,
            description=p.description,
            status=p.status,
            created_by_id=p.created_by_id,
            created_at=ensure_aware(p.created_at),
        )
        for p in payouts
    ]
    return PayoutListResponse(
        payouts=items,
        total=len(items),
        total_amount=sum(item.amount for item in items),
    )
