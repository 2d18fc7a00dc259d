"""Referral tiers and leaderboard."""

from marketplace.leaderboard.ranking import (
    RankedEntry,
    RankInput,
    normalize_display_name,
    rank_leaderboard_rows,
)
from marketplace.leaderboard.service import (
    LeaderboardService,
    LeaderboardSnapshot,
    LeaderboardWindow,
    WindowSnapshot,
    leaderboard_service,
)
from marketplace.leaderboard.tiers import TierStatus, resolve_referral_tier_status

__all__ = [
    "LeaderboardService",
    "LeaderboardSnapshot",
    "LeaderboardWindow",
    "RankInput",
    "RankedEntry",
    "TierStatus",
    "WindowSnapshot",
    "leaderboard_service",
    "normalize_display_name",
    "rank_leaderboard_rows",
    "resolve_referral_tier_status",
]
