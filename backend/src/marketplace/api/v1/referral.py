"""Referral API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from marketplace.api.deps import require_internal, require_viewer
from marketplace.api.rate_limit import limiter
from marketplace.logging_config import get_logger
from marketplace.policy.store import policy_store
from marketplace.referral.codes import code_registry
from marketplace.referral.dashboard import dashboard_service
from marketplace.referral.errors import CodeGenerationExhausted, CodeNotFound, MilestoneNotFound
from marketplace.referral.graph import attribution_graph
from marketplace.referral.milestones import milestone_service
from marketplace.referral.tracking import share_tracker
from marketplace.settings import settings
from marketplace.storage.db import db
from marketplace.storage.models import UserAccount

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


def _share_link(code: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/ref/{code}"


# ==================== MODELS ====================


class ReferralCodeResponse(BaseModel):
    """Response with user's referral code."""
    code: str
    link: str
    created: bool


class ValidateCodeRequest(BaseModel):
    """Request to validate a referral code."""
    code: str = Field(..., min_length=1, max_length=20)


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referrer_name: str | None = None


class TrackClickRequest(BaseModel):
    """A visit to a share link."""
    code: str = Field(..., min_length=1, max_length=20)
    anon_id: str | None = Field(default=None, max_length=120)
    referrer_url: str | None = Field(default=None, max_length=500)


class CaptureRequest(BaseModel):
    """Attribute a newly created user to a referral code."""
    referred_user_id: int = Field(..., gt=0)
    code: str = Field(..., min_length=1, max_length=20)
    max_depth: int | None = Field(default=None, ge=1)


class CaptureResponse(BaseModel):
    ok: bool
    captured: bool
    reason: str | None = None
    depth: int | None = None
    referrer_user_id: int | None = None


class TreeNodeResponse(BaseModel):
    user_id: int
    level: int
    depth: int
    joined_at: datetime
    label: str
    status: str


class ActivityResponse(BaseModel):
    reward_id: int
    referred_user_id: int
    level: int
    credit_type: str
    amount: float
    event_type: str
    issued_at: datetime
    label: str


class FunnelResponse(BaseModel):
    clicks: int
    signups: int
    paid_referrals: int
    signup_rate: float


class DashboardResponse(BaseModel):
    """Referral dashboard for the current user."""
    total_referrals: int
    direct_referrals: int
    indirect_referrals: int
    verified_referrals: int
    credits_earned_total: float
    credits_earned_by_level: dict[int, float]
    tree: dict[int, list[TreeNodeResponse]]
    recent_activity: list[ActivityResponse]
    funnel: FunnelResponse


class MilestoneResponse(BaseModel):
    id: int
    name: str
    threshold: int
    bonus_credits: int
    status: str
    claimable: bool
    claimed_at: datetime | None = None


class ClaimResponse(BaseModel):
    ok: bool
    milestone_id: int
    reason: str | None = None
    already_claimed: bool = False
    bonus_credits: int = 0


# ==================== ENDPOINTS ====================


@router.get("/code", response_model=ReferralCodeResponse)
async def get_referral_code(user_id: int = Depends(require_viewer)):
    """Get current user's referral code.

    Creates a new code if user doesn't have one.
    """
    try:
        result = code_registry.ensure_referral_code(user_id)
    except CodeGenerationExhausted:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not allocate a referral code, please retry",
        )

    return ReferralCodeResponse(code=result.code, link=_share_link(result.code), created=result.created)


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit("30/minute")
async def validate_referral_code(request: Request, body: ValidateCodeRequest):
    """Validate a referral code.

    Used during registration to check if a referral code is valid
    and get the referrer's first name for personalization.
    """
    referrer_id = code_registry.resolve_code(body.code)
    if referrer_id is None:
        return ValidateCodeResponse(valid=False)

    with db.session() as session:
        referrer = session.get(UserAccount, referrer_id)
        name = referrer.public_name if referrer else None

    return ValidateCodeResponse(valid=True, referrer_name=name.split()[0] if name else None)


@router.post("/track-click")
@limiter.limit("60/minute")
async def track_referral_click(request: Request, body: TrackClickRequest):
    """Track a click on a referral link.

    Called when someone opens a share link. Tracking failures are logged
    and never surface to the visitor.
    """
    tracked = share_tracker.track_click(
        body.code,
        anon_id=body.anon_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referrer_url=body.referrer_url or request.headers.get("referer"),
    )
    if not tracked:
        logger.info("referral_click_unknown_code", code=body.code)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid referral code",
        )

    return {"success": True}


@router.post("/capture", response_model=CaptureResponse, dependencies=[Depends(require_internal)])
async def capture_referral(body: CaptureRequest):
    """Attribute a new account to the referrer owning `code`.

    Called once by the onboarding flow at account creation. Repeated calls
    are harmless.
    """
    max_depth = body.max_depth or policy_store.get_snapshot().max_depth
    try:
        result = attribution_graph.capture_referral_for_user(body.referred_user_id, body.code, max_depth)
    except CodeNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid referral code",
        )

    return CaptureResponse(
        ok=result.ok,
        captured=result.captured,
        reason=result.reason,
        depth=result.depth,
        referrer_user_id=result.referrer_user_id,
    )


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(user_id: int = Depends(require_viewer)):
    """Downline, active referrals and earnings for the current user."""
    snapshot = dashboard_service.get_snapshot(user_id, policy_store.get_snapshot().max_depth)
    return DashboardResponse(
        total_referrals=snapshot.total_referrals,
        direct_referrals=snapshot.direct_referrals,
        indirect_referrals=snapshot.indirect_referrals,
        verified_referrals=snapshot.verified_referrals,
        credits_earned_total=snapshot.credits_earned_total,
        credits_earned_by_level=snapshot.credits_earned_by_level,
        tree={
            level: [TreeNodeResponse(**vars(node)) for node in nodes]
            for level, nodes in snapshot.tree.items()
        },
        recent_activity=[ActivityResponse(**vars(item)) for item in snapshot.recent_activity],
        funnel=FunnelResponse(
            clicks=snapshot.funnel.clicks,
            signups=snapshot.funnel.signups,
            paid_referrals=snapshot.funnel.paid_referrals,
            signup_rate=snapshot.funnel.signup_rate,
        ),
    )


@router.get("/milestones", response_model=list[MilestoneResponse])
async def list_milestones(user_id: int = Depends(require_viewer)):
    """Milestone ladder with the current user's progress."""
    return [
        MilestoneResponse(
            id=item.id,
            name=item.name,
            threshold=item.threshold,
            bonus_credits=item.bonus_credits,
            status=item.status,
            claimable=item.claimable,
            claimed_at=item.claimed_at,
        )
        for item in milestone_service.list_statuses(user_id)
    ]


@router.post("/milestones/{milestone_id}/claim", response_model=ClaimResponse)
async def claim_milestone(milestone_id: int, user_id: int = Depends(require_viewer)):
    """Claim a milestone bonus once it has been reached."""
    try:
        result = milestone_service.claim(user_id, milestone_id)
    except MilestoneNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Milestone not found",
        )

    return ClaimResponse(**vars(result))
