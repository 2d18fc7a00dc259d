"""Referral milestone bonuses.

A milestone pays a one-off listing-credit bonus once a referrer reaches a
number of active referrals. Claims are idempotent per (milestone, user).
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from marketplace.ledger.models import LedgerSource
from marketplace.ledger.service import CreditLedger, credit_ledger
from marketplace.logging_config import get_logger
from marketplace.policy.snapshot import CreditType
from marketplace.referral.errors import MilestoneNotFound
from marketplace.referral.models import ReferralMilestone, ReferralMilestoneClaim, ReferralReward
from marketplace.storage.db import Database, db, is_unique_violation

logger = get_logger(__name__)


@dataclass
class MilestoneStatus:
    id: int
    name: str
    threshold: int
    bonus_credits: int
    is_enabled: bool
    status: str  # locked | achieved | claimed
    claimable: bool
    claimed_at: datetime | None = None


@dataclass
class ClaimResult:
    ok: bool
    milestone_id: int
    reason: str | None = None
    already_claimed: bool = False
    bonus_credits: int = 0


class MilestoneService:
    """Milestone definitions, per-user status and claims."""

    def __init__(self, database: Database | None = None, ledger: CreditLedger | None = None):
        self.db = database or db
        self.ledger = ledger or credit_ledger
        self.logger = get_logger(__name__)

    def create_milestone(
        self,
        name: str,
        threshold: int,
        bonus_credits: int,
        is_enabled: bool = True,
    ) -> ReferralMilestone:
        """Define a milestone (operator action)."""
        if threshold < 1 or bonus_credits < 1:
            raise ValueError("Milestone threshold and bonus must be at least 1")

        with self.db.session() as session:
            milestone = ReferralMilestone(
                name=name.strip(),
                active_referrals_threshold=threshold,
                bonus_credits=bonus_credits,
                is_enabled=is_enabled,
            )
            session.add(milestone)
            session.flush()

        self.logger.info("referral_milestone_created", milestone_id=milestone.id, threshold=threshold)
        return milestone

    def count_active_referrals(self, user_id: int) -> int:
        """Distinct referred users that earned `user_id` at least one reward."""
        with self.db.session() as session:
            return int(
                session.scalar(
                    select(func.count(func.distinct(ReferralReward.referred_user_id))).where(
                        ReferralReward.referrer_user_id == user_id
                    )
                )
                or 0
            )

    def list_statuses(
        self,
        user_id: int,
        active_referrals: int | None = None,
        include_disabled: bool = False,
    ) -> list[MilestoneStatus]:
        """Milestones in threshold order with the user's progress on each."""
        if active_referrals is None:
            active_referrals = self.count_active_referrals(user_id)
        active_referrals = max(0, int(active_referrals))

        with self.db.session() as session:
            query = select(ReferralMilestone).order_by(
                ReferralMilestone.active_referrals_threshold, ReferralMilestone.created_at
            )
            if not include_disabled:
                query = query.where(ReferralMilestone.is_enabled.is_(True))
            milestones = session.scalars(query).all()

            claims = {
                claim.milestone_id: claim.claimed_at
                for claim in session.scalars(
                    select(ReferralMilestoneClaim).where(ReferralMilestoneClaim.user_id == user_id)
                )
            }

        statuses = []
        for milestone in milestones:
            claimed_at = claims.get(milestone.id)
            achieved = active_referrals >= milestone.active_referrals_threshold
            if claimed_at:
                status = "claimed"
            else:
                status = "achieved" if achieved else "locked"
            statuses.append(
                MilestoneStatus(
                    id=milestone.id,
                    name=milestone.name,
                    threshold=milestone.active_referrals_threshold,
                    bonus_credits=milestone.bonus_credits,
                    is_enabled=milestone.is_enabled,
                    status=status,
                    claimable=bool(milestone.is_enabled and achieved and not claimed_at),
                    claimed_at=claimed_at,
                )
            )
        return statuses

    def _has_claim(self, milestone_id: int, user_id: int) -> bool:
        with self.db.session() as session:
            return session.scalars(
                select(ReferralMilestoneClaim).where(
                    ReferralMilestoneClaim.milestone_id == milestone_id,
                    ReferralMilestoneClaim.user_id == user_id,
                )
            ).first() is not None

    def claim(self, user_id: int, milestone_id: int, active_referrals: int | None = None) -> ClaimResult:
        """Claim a milestone bonus.

        Args:
            user_id: Claiming user
            milestone_id: Milestone to claim
            active_referrals: Current active referrals (computed when omitted)

        Returns:
            Claim result

        Raises:
            MilestoneNotFound: If the milestone does not exist
        """
        with self.db.session() as session:
            milestone = session.get(ReferralMilestone, milestone_id)
        if milestone is None:
            raise MilestoneNotFound(milestone_id)

        if not milestone.is_enabled:
            return ClaimResult(ok=False, milestone_id=milestone_id, reason="milestone_disabled")

        if active_referrals is None:
            active_referrals = self.count_active_referrals(user_id)
        if active_referrals < milestone.active_referrals_threshold:
            return ClaimResult(ok=False, milestone_id=milestone_id, reason="threshold_not_met")

        if self._has_claim(milestone_id, user_id):
            return ClaimResult(ok=True, milestone_id=milestone_id, already_claimed=True)

        try:
            with self.db.session() as session:
                session.add(ReferralMilestoneClaim(milestone_id=milestone_id, user_id=user_id))
                session.flush()
                self.ledger.append_entry(
                    session,
                    user_id=user_id,
                    credit_type=CreditType.LISTING_CREDIT,
                    delta=float(milestone.bonus_credits),
                    source=LedgerSource.MILESTONE_BONUS,
                    source_ref=str(milestone_id),
                    description=f"Referral milestone bonus: {milestone.name}",
                )
        except IntegrityError as e:
            if not is_unique_violation(e) or not self._has_claim(milestone_id, user_id):
                raise
            return ClaimResult(ok=True, milestone_id=milestone_id, already_claimed=True)

        self.logger.info(
            "referral_milestone_claimed",
            user_id=user_id,
            milestone_id=milestone_id,
            bonus_credits=milestone.bonus_credits,
        )
        return ClaimResult(ok=True, milestone_id=milestone_id, bonus_credits=milestone.bonus_credits)


# Singleton instance
milestone_service = MilestoneService()
