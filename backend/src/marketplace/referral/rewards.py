"""Reward issuance engine.

Called by payment verification and credit-consumption flows after they have
confirmed a monetizable action. Callers invoke it speculatively and on every
redelivery, so correctness rests on the reward idempotency key, not on callers
deduplicating.

Cap checks read committed rewards before inserting. Two concurrent events for
the same referrer can both pass the check before either commits; caps are an
abuse deterrent and that bounded overshoot is accepted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from marketplace.ledger.models import LedgerSource
from marketplace.ledger.service import CreditLedger, credit_ledger
from marketplace.logging_config import get_logger
from marketplace.policy.snapshot import PolicySnapshot, RewardRule
from marketplace.policy.store import PolicyStore, policy_store
from marketplace.referral.errors import InvalidEventError
from marketplace.referral.graph import Ancestor, AttributionGraph, attribution_graph
from marketplace.referral.models import ReferralReward
from marketplace.referral.tracking import ShareTracker, share_tracker
from marketplace.storage.db import Database, db, is_unique_violation
from marketplace.timeutils import day_start, month_start, next_day_start, next_month_start, to_naive_utc, utcnow

logger = get_logger(__name__)


class RewardEventType(str, Enum):
    """Monetizable events that pay referral rewards."""
    PAYG_LISTING_FEE_PAID = "payg_listing_fee_paid"
    FEATURED_PURCHASE_PAID = "featured_purchase_paid"
    SUBSCRIPTION_PAID = "subscription_paid"


class SkipReason(str, Enum):
    """Why an ancestor did not receive a reward for an event."""
    LEVEL_DISABLED = "level_disabled"
    NO_RULE = "no_rule"
    CAPPED = "capped"
    ALREADY_ISSUED = "already_issued"


@dataclass
class SkipRecord:
    user_id: int
    level: int
    reason: SkipReason


@dataclass
class IssueResult:
    """Outcome of an issuance call.

    `issued` counts newly created rewards only; a replay of an event that
    already paid out reports zero.
    """
    issued: int = 0
    skipped: int = 0
    reason: str | None = None
    skips: list[SkipRecord] = field(default_factory=list)
    reward_ids: list[int] = field(default_factory=list)

    def skip(self, ancestor: Ancestor, reason: SkipReason) -> None:
        self.skipped += 1
        self.skips.append(SkipRecord(user_id=ancestor.user_id, level=ancestor.level, reason=reason))


def parse_event_type(value: str | RewardEventType) -> RewardEventType:
    """Validate an event type.

    Raises:
        InvalidEventError: If the value is not a known event type
    """
    try:
        return RewardEventType(value)
    except ValueError:
        raise InvalidEventError(f"Unknown event type: {value!r}") from None


class RewardIssuanceEngine:
    """Walks the ancestor chain for an event and credits each eligible ancestor once."""

    def __init__(
        self,
        database: Database | None = None,
        graph: AttributionGraph | None = None,
        ledger: CreditLedger | None = None,
        policies: PolicyStore | None = None,
        tracker: ShareTracker | None = None,
    ):
        self.db = database or db
        self.graph = graph or attribution_graph
        self.ledger = ledger or credit_ledger
        self.policies = policies or policy_store
        self.tracker = tracker or share_tracker
        self.logger = get_logger(__name__)

    def _issued_amount_between(self, referrer_user_id: int, since: datetime, until: datetime) -> float:
        with self.db.session() as session:
            total = session.scalar(
                select(func.coalesce(func.sum(ReferralReward.amount), 0.0)).where(
                    ReferralReward.referrer_user_id == referrer_user_id,
                    ReferralReward.issued_at >= since,
                    ReferralReward.issued_at < until,
                )
            )
            return float(total or 0.0)

    def _exceeds_caps(self, policy: PolicySnapshot, ancestor: Ancestor, rule: RewardRule, issued_at: datetime) -> bool:
        caps = policy.caps
        if caps.daily > 0:
            daily = self._issued_amount_between(ancestor.user_id, day_start(issued_at), next_day_start(issued_at))
            if daily + rule.amount > caps.daily:
                return True
        if caps.monthly > 0:
            monthly = self._issued_amount_between(
                ancestor.user_id, month_start(issued_at), next_month_start(issued_at)
            )
            if monthly + rule.amount > caps.monthly:
                return True
        return False

    def _find_reward(
        self,
        ancestor: Ancestor,
        referred_user_id: int,
        event_type: RewardEventType,
        event_reference: str,
    ) -> ReferralReward | None:
        with self.db.session() as session:
            return session.scalars(
                select(ReferralReward).where(
                    ReferralReward.referrer_user_id == ancestor.user_id,
                    ReferralReward.referred_user_id == referred_user_id,
                    ReferralReward.level == ancestor.level,
                    ReferralReward.event_type == event_type.value,
                    ReferralReward.event_reference == event_reference,
                )
            ).first()

    def _insert_reward(
        self,
        ancestor: Ancestor,
        referred_user_id: int,
        event_type: RewardEventType,
        event_reference: str,
        rule: RewardRule,
        issued_at: datetime,
    ) -> int | None:
        """Insert the reward and its ledger credit in one transaction.

        Returns:
            The new reward id, or None if this reward already existed
        """
        try:
            with self.db.session() as session:
                reward = ReferralReward(
                    referrer_user_id=ancestor.user_id,
                    referred_user_id=referred_user_id,
                    level=ancestor.level,
                    event_type=event_type.value,
                    event_reference=event_reference,
                    credit_type=rule.credit_type.value,
                    amount=rule.amount,
                    issued_at=issued_at,
                )
                session.add(reward)
                session.flush()

                self.ledger.append_entry(
                    session,
                    user_id=ancestor.user_id,
                    credit_type=rule.credit_type,
                    delta=rule.amount,
                    source=LedgerSource.REFERRAL_REWARD,
                    source_ref=str(reward.id),
                    reward_id=reward.id,
                    description=f"Level {ancestor.level} referral reward ({event_type.value})",
                    issued_at=issued_at,
                )
                return reward.id
        except IntegrityError as e:
            if not is_unique_violation(e):
                raise
            if self._find_reward(ancestor, referred_user_id, event_type, event_reference) is None:
                raise
            return None

    def issue_referral_rewards_for_event(
        self,
        referred_user_id: int,
        event_type: str | RewardEventType,
        event_reference: str,
        issued_at: datetime | None = None,
        policy: PolicySnapshot | None = None,
    ) -> IssueResult:
        """Credit the referral chain of `referred_user_id` for one paid event.

        Args:
            referred_user_id: User whose action was paid for
            event_type: Kind of monetizable event
            event_reference: Stable external id (e.g. gateway transaction ref)
            issued_at: Event time, defaults to now
            policy: Policy snapshot; loaded from the policy store when omitted

        Returns:
            Issue result

        Raises:
            InvalidEventError: If the event type or reference is malformed
        """
        event_type = parse_event_type(event_type)
        event_reference = (event_reference or "").strip()
        if not event_reference:
            raise InvalidEventError("event_reference is required")

        issued_at = to_naive_utc(issued_at) if issued_at else utcnow()
        policy = policy or self.policies.get_snapshot()

        if not policy.enabled:
            return IssueResult(reason="disabled")

        ancestors = self.graph.get_referral_ancestors(referred_user_id, policy.max_depth)
        if not ancestors:
            return IssueResult(reason="no_ancestors")

        result = IssueResult()
        for ancestor in ancestors:
            if ancestor.level not in policy.enabled_levels:
                result.skip(ancestor, SkipReason.LEVEL_DISABLED)
                continue

            rule = policy.rule_for(ancestor.level)
            if rule is None:
                result.skip(ancestor, SkipReason.NO_RULE)
                continue

            # Replays must report already_issued, not count their own reward against the cap
            if self._find_reward(ancestor, referred_user_id, event_type, event_reference) is not None:
                result.skip(ancestor, SkipReason.ALREADY_ISSUED)
                continue

            if self._exceeds_caps(policy, ancestor, rule, issued_at):
                self.logger.info(
                    "referral_reward_capped",
                    referrer_user_id=ancestor.user_id,
                    referred_user_id=referred_user_id,
                    level=ancestor.level,
                    event_reference=event_reference,
                )
                result.skip(ancestor, SkipReason.CAPPED)
                continue

            reward_id = self._insert_reward(
                ancestor, referred_user_id, event_type, event_reference, rule, issued_at
            )
            if reward_id is None:
                result.skip(ancestor, SkipReason.ALREADY_ISSUED)
                continue

            result.issued += 1
            result.reward_ids.append(reward_id)
            self.logger.info(
                "referral_reward_issued",
                reward_id=reward_id,
                referrer_user_id=ancestor.user_id,
                referred_user_id=referred_user_id,
                level=ancestor.level,
                credit_type=rule.credit_type.value,
                amount=rule.amount,
                event_type=event_type.value,
            )

        if result.issued:
            self.tracker.log_paid_event(referred_user_id)

        return result


# Singleton instance
reward_engine = RewardIssuanceEngine()
