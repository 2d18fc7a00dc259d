"""Referral dashboard: a referrer's own downline and earnings."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select

from marketplace.policy.snapshot import MAX_SUPPORTED_DEPTH, clamp_depth
from marketplace.referral.models import ReferralEdge, ReferralReward
from marketplace.referral.tracking import ReferralFunnel, ShareTracker, share_tracker
from marketplace.storage.db import Database, db
from marketplace.storage.models import UserAccount

RECENT_ACTIVITY_LIMIT = 10


@dataclass
class TreeNode:
    user_id: int
    level: int
    depth: int
    joined_at: datetime
    label: str
    status: str  # "pending" until the first reward for this user, then "active"


@dataclass
class RewardActivity:
    reward_id: int
    referred_user_id: int
    level: int
    credit_type: str
    amount: float
    event_type: str
    issued_at: datetime
    label: str


@dataclass
class DashboardSnapshot:
    total_referrals: int = 0
    direct_referrals: int = 0
    indirect_referrals: int = 0
    verified_referrals: int = 0
    credits_earned_total: float = 0.0
    credits_earned_by_level: dict[int, float] = field(default_factory=dict)
    tree: dict[int, list[TreeNode]] = field(default_factory=dict)
    recent_activity: list[RewardActivity] = field(default_factory=list)
    funnel: ReferralFunnel = field(default_factory=ReferralFunnel)


def _label(user_id: int, names: dict[int, str]) -> str:
    name = (names.get(user_id) or "").strip()
    return name or f"Agent {str(user_id)[:8]}"


class ReferralDashboardService:
    """Builds the dashboard shown to a referrer about their own network."""

    def __init__(self, database: Database | None = None, tracker: ShareTracker | None = None):
        self.db = database or db
        self.tracker = tracker or share_tracker

    def get_snapshot(self, user_id: int, max_depth: int = MAX_SUPPORTED_DEPTH) -> DashboardSnapshot:
        """Downline tree, counts and reward history for `user_id`.

        The tree is walked breadth-first from the user, level by level, and
        stops at `max_depth`.
        """
        max_depth = clamp_depth(max_depth)

        with self.db.session() as session:
            rewards = session.scalars(
                select(ReferralReward)
                .where(ReferralReward.referrer_user_id == user_id)
                .order_by(ReferralReward.issued_at.desc(), ReferralReward.id.desc())
            ).all()

            tree: dict[int, list[TreeNode]] = {}
            active_ids = {reward.referred_user_id for reward in rewards}
            seen = {user_id}
            queue = deque([(user_id, 0)])
            while queue:
                parent_id, level = queue.popleft()
                if level >= max_depth:
                    continue
                children = session.scalars(
                    select(ReferralEdge)
                    .where(ReferralEdge.referrer_user_id == parent_id)
                    .order_by(ReferralEdge.created_at.desc())
                ).all()
                for child in children:
                    if child.referred_user_id in seen:
                        continue
                    seen.add(child.referred_user_id)
                    tree.setdefault(level + 1, []).append(
                        TreeNode(
                            user_id=child.referred_user_id,
                            level=level + 1,
                            depth=child.depth,
                            joined_at=child.created_at,
                            label="",
                            status="active" if child.referred_user_id in active_ids else "pending",
                        )
                    )
                    queue.append((child.referred_user_id, level + 1))

            profile_ids = (seen - {user_id}) | active_ids
            names: dict[int, str] = {}
            if profile_ids:
                for profile in session.scalars(select(UserAccount).where(UserAccount.id.in_(profile_ids))):
                    names[profile.id] = profile.public_name or ""

        for nodes in tree.values():
            for node in nodes:
                node.label = _label(node.user_id, names)

        earned_by_level: dict[int, float] = {}
        for reward in rewards:
            earned_by_level[reward.level] = earned_by_level.get(reward.level, 0.0) + max(0.0, reward.amount)

        total = sum(len(nodes) for nodes in tree.values())
        direct = len(tree.get(1, []))

        return DashboardSnapshot(
            total_referrals=total,
            direct_referrals=direct,
            indirect_referrals=max(0, total - direct),
            verified_referrals=len(active_ids),
            credits_earned_total=round(sum(earned_by_level.values()), 4),
            credits_earned_by_level=earned_by_level,
            tree=tree,
            recent_activity=[
                RewardActivity(
                    reward_id=reward.id,
                    referred_user_id=reward.referred_user_id,
                    level=reward.level,
                    credit_type=reward.credit_type,
                    amount=round(reward.amount, 2),
                    event_type=reward.event_type,
                    issued_at=reward.issued_at,
                    label=_label(reward.referred_user_id, names),
                )
                for reward in rewards[:RECENT_ACTIVITY_LIMIT]
            ],
            funnel=self.tracker.get_funnel(user_id),
        )


# Singleton instance
dashboard_service = ReferralDashboardService()
