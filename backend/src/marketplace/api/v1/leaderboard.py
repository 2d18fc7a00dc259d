"""Leaderboard endpoints. Display-only: no amounts leave this router."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from marketplace.api.deps import require_viewer
from marketplace.leaderboard.service import LeaderboardWindow, leaderboard_service

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


class EntryResponse(BaseModel):
    rank: int
    display_name: str
    tier: str
    active_referrals: int
    is_you: bool


class WindowResponse(BaseModel):
    window: LeaderboardWindow
    label: str
    entries: list[EntryResponse]
    my_rank: int | None
    my_active_referrals: int
    total_agents: int


class LeaderboardResponse(BaseModel):
    available: bool
    enabled: bool
    public_visible: bool
    available_windows: list[LeaderboardWindow]
    default_window: LeaderboardWindow
    user_opted_out: bool
    windows: list[WindowResponse]


class OptOutRequest(BaseModel):
    opted_out: bool


@router.get("", response_model=LeaderboardResponse)
async def get_leaderboard(
    user_id: int = Depends(require_viewer),
    window: LeaderboardWindow | None = None,
    limit: int = Query(default=10, ge=1, le=100),
):
    """Ranked referrers for the requested window(s)."""
    snapshot = leaderboard_service.get_snapshot(user_id, window=window, top_limit=limit)

    return LeaderboardResponse(
        available=snapshot.available,
        enabled=snapshot.enabled,
        public_visible=snapshot.public_visible,
        available_windows=snapshot.available_windows,
        default_window=snapshot.default_window,
        user_opted_out=snapshot.user_opted_out,
        windows=[
            WindowResponse(
                window=item.window,
                label=item.label,
                entries=[
                    EntryResponse(
                        rank=entry.rank,
                        display_name=entry.display_name,
                        tier=entry.tier,
                        active_referrals=entry.active_referrals,
                        is_you=entry.is_you,
                    )
                    for entry in item.entries
                ],
                my_rank=item.my_rank,
                my_active_referrals=item.my_active_referrals,
                total_agents=item.total_agents,
            )
            for item in snapshot.windows
        ],
    )


@router.put("/opt-out")
async def set_opt_out(body: OptOutRequest, user_id: int = Depends(require_viewer)):
    """Hide or show the current user on the public leaderboard."""
    if not leaderboard_service.set_opt_out(user_id, body.opted_out):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return {"opted_out": body.opted_out}
