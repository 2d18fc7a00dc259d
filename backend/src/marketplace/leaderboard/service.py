"""Referral leaderboard snapshots.

Read-only. Ranks come from distinct active referrals, never from invite counts
or reward amounts, and the output carries no financial fields.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.leaderboard.ranking import (
    RankedEntry,
    RankInput,
    normalize_display_name,
    rank_leaderboard_rows,
)
from marketplace.leaderboard.tiers import resolve_referral_tier_status
from marketplace.logging_config import get_logger
from marketplace.policy.snapshot import LeaderboardConfig, PolicyConfigError, PolicySnapshot
from marketplace.policy.store import PolicyStore, policy_store
from marketplace.referral.models import ReferralReward
from marketplace.settings import settings
from marketplace.storage.db import Database, db
from marketplace.storage.models import LEADERBOARD_ROLES, UserAccount
from marketplace.timeutils import month_start, to_naive_utc, utcnow

logger = get_logger(__name__)


class LeaderboardWindow(str, Enum):
    """Ranking period."""
    MONTH = "month"
    ALL_TIME = "all_time"


WINDOW_LABELS = {
    LeaderboardWindow.MONTH: "This month",
    LeaderboardWindow.ALL_TIME: "All time",
}

MAX_TOP_LIMIT = 100


@dataclass
class WindowSnapshot:
    window: LeaderboardWindow
    label: str
    entries: list[RankedEntry] = field(default_factory=list)
    my_rank: int | None = None
    my_active_referrals: int = 0
    total_agents: int = 0


@dataclass
class LeaderboardSnapshot:
    """Leaderboard response.

    `available` is False when the data could not be read; callers show an
    "unavailable" state instead of a partial ranking.
    """
    available: bool = True
    enabled: bool = True
    public_visible: bool = True
    available_windows: list[LeaderboardWindow] = field(default_factory=list)
    default_window: LeaderboardWindow = LeaderboardWindow.ALL_TIME
    user_opted_out: bool = False
    windows: list[WindowSnapshot] = field(default_factory=list)

    def window(self, window: LeaderboardWindow | str) -> WindowSnapshot | None:
        window = LeaderboardWindow(window)
        return next((item for item in self.windows if item.window == window), None)


def available_windows_for(config: LeaderboardConfig) -> list[LeaderboardWindow]:
    windows = []
    if config.monthly_enabled:
        windows.append(LeaderboardWindow.MONTH)
    if config.all_time_enabled:
        windows.append(LeaderboardWindow.ALL_TIME)
    return windows or [LeaderboardWindow.ALL_TIME]


def build_window_snapshot(
    window: LeaderboardWindow,
    rows: list[RankInput],
    viewer_id: int,
    public_visible: bool,
    top_limit: int,
) -> WindowSnapshot:
    """Rank all rows, then hide opted-out users from the visible entries.

    Opted-out users still count towards `total_agents` and still push others
    down the ranking, and the viewer always gets their own standing.
    """
    ranked = rank_leaderboard_rows(rows)
    me = next((entry for entry in ranked if entry.user_id == viewer_id), None)

    entries: list[RankedEntry] = []
    if public_visible:
        for entry in ranked:
            if entry.opted_out:
                continue
            entry.is_you = entry.user_id == viewer_id
            entries.append(entry)
            if len(entries) >= top_limit:
                break

    return WindowSnapshot(
        window=window,
        label=WINDOW_LABELS[window],
        entries=entries,
        my_rank=me.rank if me else None,
        my_active_referrals=me.active_referrals if me else 0,
        total_agents=len(ranked),
    )


class LeaderboardService:
    """Builds privacy-filtered leaderboard snapshots."""

    def __init__(self, database: Database | None = None, policies: PolicyStore | None = None):
        self.db = database or db
        self.policies = policies or policy_store
        self.logger = get_logger(__name__)

    @staticmethod
    def _active_referral_counts(session: Session, since: datetime | None = None) -> dict[int, int]:
        """Distinct referred users per referrer, optionally from `since` onwards."""
        query = select(
            ReferralReward.referrer_user_id,
            func.count(func.distinct(ReferralReward.referred_user_id)),
        ).group_by(ReferralReward.referrer_user_id)
        if since is not None:
            query = query.where(ReferralReward.issued_at >= since)
        return {referrer: count for referrer, count in session.execute(query).all()}

    def _load(self, now: datetime):
        with self.db.session() as session:
            agents = session.execute(
                select(
                    UserAccount.id,
                    UserAccount.display_name,
                    UserAccount.full_name,
                    UserAccount.leaderboard_opt_out,
                    UserAccount.created_at,
                ).where(UserAccount.role.in_(LEADERBOARD_ROLES))
            ).all()
            counts = {
                LeaderboardWindow.MONTH: self._active_referral_counts(session, since=month_start(now)),
                LeaderboardWindow.ALL_TIME: self._active_referral_counts(session),
            }
        return agents, counts

    def get_snapshot(
        self,
        viewer_id: int,
        window: LeaderboardWindow | str | None = None,
        top_limit: int | None = None,
        now: datetime | None = None,
        policy: PolicySnapshot | None = None,
    ) -> LeaderboardSnapshot:
        """Leaderboard for `viewer_id`.

        Args:
            viewer_id: User asking; always receives their own rank
            window: Restrict to one window (default: every enabled window)
            top_limit: Visible entries per window, clamped to 1..100
            now: Reference time for the monthly window
            policy: Policy snapshot; loaded from the policy store when omitted

        Returns:
            Leaderboard snapshot
        """
        top_limit = max(1, min(MAX_TOP_LIMIT, int(top_limit or settings.leaderboard_top_limit)))
        now = to_naive_utc(now) if now else utcnow()

        try:
            policy = policy or self.policies.get_snapshot()
            config = policy.leaderboard

            windows = available_windows_for(config)
            if window is not None:
                requested = LeaderboardWindow(window)
                windows = [requested] if requested in windows else []
            default_window = LeaderboardWindow.MONTH if LeaderboardWindow.MONTH in windows else LeaderboardWindow.ALL_TIME

            if not config.enabled:
                return LeaderboardSnapshot(
                    enabled=False,
                    public_visible=config.public_visible,
                    available_windows=windows,
                    default_window=default_window,
                    windows=[WindowSnapshot(window=w, label=WINDOW_LABELS[w]) for w in windows],
                )

            agents, counts = self._load(now)
        except (SQLAlchemyError, PolicyConfigError) as e:
            self.logger.error("leaderboard_unavailable", viewer_id=viewer_id, error=str(e))
            return LeaderboardSnapshot(available=False)

        snapshots = []
        for current in windows:
            rows = []
            for agent in agents:
                active = counts[current].get(agent.id, 0)
                rows.append(
                    RankInput(
                        user_id=agent.id,
                        display_name=normalize_display_name(
                            agent.display_name or agent.full_name,
                            agent.id,
                            initials_only=config.initials_only,
                        ),
                        tier=resolve_referral_tier_status(active, policy.tier_thresholds).current_tier,
                        active_referrals=active,
                        opted_out=bool(agent.leaderboard_opt_out),
                        joined_at=agent.created_at,
                    )
                )
            snapshots.append(
                build_window_snapshot(
                    current,
                    rows,
                    viewer_id=viewer_id,
                    public_visible=config.public_visible,
                    top_limit=top_limit,
                )
            )

        user_opted_out = any(agent.id == viewer_id and agent.leaderboard_opt_out for agent in agents)
        return LeaderboardSnapshot(
            enabled=True,
            public_visible=config.public_visible,
            available_windows=windows,
            default_window=default_window,
            user_opted_out=user_opted_out,
            windows=snapshots,
        )

    def set_opt_out(self, user_id: int, opted_out: bool) -> bool:
        """Hide or show a user on the public leaderboard.

        Returns:
            True if the user exists
        """
        with self.db.session() as session:
            result = session.execute(
                update(UserAccount)
                .where(UserAccount.id == user_id)
                .values(leaderboard_opt_out=opted_out)
            )
            found = result.rowcount > 0

        if found:
            self.logger.info("leaderboard_opt_out_changed", user_id=user_id, opted_out=opted_out)
        return found


# Singleton instance
leaderboard_service = LeaderboardService()
