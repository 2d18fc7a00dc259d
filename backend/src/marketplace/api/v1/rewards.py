"""Reward event intake.

Payment verification and credit-consumption flows post here after they have
independently confirmed a monetizable action. Redeliveries are expected and
harmless.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from marketplace.api.deps import require_internal
from marketplace.logging_config import get_logger
from marketplace.referral.errors import InvalidEventError
from marketplace.referral.rewards import RewardEventType, reward_engine

logger = get_logger(__name__)

router = APIRouter(prefix="/rewards", tags=["rewards"], dependencies=[Depends(require_internal)])


class RewardEventRequest(BaseModel):
    """A confirmed monetizable action by a referred user."""
    referred_user_id: int = Field(..., gt=0)
    event_type: RewardEventType
    event_reference: str = Field(..., min_length=1, max_length=255)
    issued_at: datetime | None = None


class SkipResponse(BaseModel):
    user_id: int
    level: int
    reason: str


class RewardEventResponse(BaseModel):
    issued: int
    skipped: int
    reason: str | None = None
    skips: list[SkipResponse]


@router.post("/events", response_model=RewardEventResponse)
async def issue_rewards(body: RewardEventRequest):
    """Issue referral rewards for a paid event.

    Returns how many rewards were newly issued; replays report zero.
    """
    try:
        result = reward_engine.issue_referral_rewards_for_event(
            referred_user_id=body.referred_user_id,
            event_type=body.event_type,
            event_reference=body.event_reference,
            issued_at=body.issued_at,
        )
    except InvalidEventError as e:
        logger.warning("reward_event_rejected", referred_user_id=body.referred_user_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return RewardEventResponse(
        issued=result.issued,
        skipped=result.skipped,
        reason=result.reason,
        skips=[
            SkipResponse(user_id=skip.user_id, level=skip.level, reason=skip.reason.value)
            for skip in result.skips
        ],
    )
