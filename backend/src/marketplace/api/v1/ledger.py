"""Credit ledger endpoints for credit-consuming features."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from marketplace.api.deps import require_viewer
from marketplace.ledger.service import InsufficientCreditsError, SpendConflictError, credit_ledger
from marketplace.logging_config import get_logger
from marketplace.policy.snapshot import CreditType

logger = get_logger(__name__)

router = APIRouter(prefix="/ledger", tags=["ledger"])


class BalancesResponse(BaseModel):
    balances: dict[str, float]


class SpendRequest(BaseModel):
    """Spend credits on a feature (listing publish, featured placement)."""
    credit_type: CreditType
    amount: float = Field(..., gt=0)
    reference: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=500)


class SpendResponse(BaseModel):
    entry_id: int
    balance_after: float
    replayed: bool


class LedgerEntryResponse(BaseModel):
    id: int
    credit_type: str
    delta: float
    source: str
    description: str | None
    issued_at: datetime


@router.get("/balances", response_model=BalancesResponse)
async def get_balances(user_id: int = Depends(require_viewer)):
    """Current balance of every credit type."""
    return BalancesResponse(balances=credit_ledger.get_balances(user_id))


@router.post("/spend", response_model=SpendResponse)
async def spend_credits(body: SpendRequest, user_id: int = Depends(require_viewer)):
    """Spend credits once per reference."""
    try:
        result = credit_ledger.spend(
            user_id=user_id,
            credit_type=body.credit_type,
            amount=body.amount,
            reference=body.reference,
            description=body.description,
        )
    except (InsufficientCreditsError, SpendConflictError) as e:
        logger.info("ledger_spend_rejected", user_id=user_id, reference=body.reference, error=str(e))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return SpendResponse(entry_id=result.entry.id, balance_after=result.balance_after, replayed=result.replayed)


@router.get("/history", response_model=list[LedgerEntryResponse])
async def get_history(
    user_id: int = Depends(require_viewer),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """Ledger entries, newest first."""
    return [
        LedgerEntryResponse(
            id=entry.id,
            credit_type=entry.credit_type,
            delta=entry.delta,
            source=entry.source,
            description=entry.description,
            issued_at=entry.issued_at,
        )
        for entry in credit_ledger.history(user_id, limit=limit, offset=offset)
    ]
