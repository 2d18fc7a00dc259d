"""Tests for reward issuance."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from marketplace.ledger.models import CreditLedgerEntry
from marketplace.ledger.service import credit_ledger
from marketplace.policy.snapshot import CreditType
from marketplace.referral.codes import code_registry
from marketplace.referral.errors import InvalidEventError
from marketplace.referral.graph import attribution_graph
from marketplace.referral.models import ReferralReward
from marketplace.referral.rewards import SkipReason, reward_engine
from marketplace.storage.db import db

THREE_LEVEL_RULES = {
    "1": {"type": "listing_credit", "amount": 2},
    "2": {"type": "listing_credit", "amount": 1},
    "3": {"type": "featured_credit", "amount": 0.5},
}


def build_chain(make_user, length: int) -> list[int]:
    users = [make_user(f"User {i}") for i in range(1, length + 1)]
    for parent, child in zip(users, users[1:]):
        code = code_registry.ensure_referral_code(parent).code
        attribution_graph.capture_referral_for_user(child, code)
    return users


def reward_count() -> int:
    with db.session() as session:
        return len(session.scalars(select(ReferralReward)).all())


class TestIssuance:
    def test_disabled_issues_nothing(self, make_user):
        u1, u2 = build_chain(make_user, 2)

        result = reward_engine.issue_referral_rewards_for_event(u2, "payg_listing_fee_paid", "pay_1")

        assert result.issued == 0
        assert result.reason == "disabled"
        assert reward_count() == 0

    def test_no_ancestors(self, make_user, enable_referrals):
        enable_referrals()
        result = reward_engine.issue_referral_rewards_for_event(make_user(), "subscription_paid", "sub_1")
        assert result.issued == 0
        assert result.reason == "no_ancestors"

    def test_direct_referrer_rewarded(self, make_user, enable_referrals):
        enable_referrals()
        u1, u2 = build_chain(make_user, 2)

        result = reward_engine.issue_referral_rewards_for_event(u2, "payg_listing_fee_paid", "pay_1")

        assert result.issued == 1
        assert credit_ledger.get_balance(u1, CreditType.LISTING_CREDIT) == 1.0

    def test_rewards_every_enabled_level(self, make_user, enable_referrals):
        enable_referrals(enabled_levels=[1, 2, 3], reward_rules=THREE_LEVEL_RULES)
        u1, u2, u3, u4 = build_chain(make_user, 4)

        result = reward_engine.issue_referral_rewards_for_event(u4, "featured_purchase_paid", "fp_9")

        assert result.issued == 3
        assert credit_ledger.get_balance(u3, CreditType.LISTING_CREDIT) == 2.0
        assert credit_ledger.get_balance(u2, CreditType.LISTING_CREDIT) == 1.0
        assert credit_ledger.get_balance(u1, CreditType.FEATURED_CREDIT) == 0.5

    def test_disabled_level_is_skipped(self, make_user, enable_referrals):
        enable_referrals(enabled_levels=[1, 3], reward_rules=THREE_LEVEL_RULES)
        u1, u2, u3, u4 = build_chain(make_user, 4)

        result = reward_engine.issue_referral_rewards_for_event(u4, "subscription_paid", "sub_1")

        assert result.issued == 2
        assert [(s.user_id, s.reason) for s in result.skips] == [(u2, SkipReason.LEVEL_DISABLED)]
        assert credit_ledger.get_balance(u2, CreditType.LISTING_CREDIT) == 0.0

    def test_level_without_rule_is_skipped(self, make_user, enable_referrals):
        enable_referrals(enabled_levels=[1, 2])
        u1, u2, u3 = build_chain(make_user, 3)

        result = reward_engine.issue_referral_rewards_for_event(u3, "subscription_paid", "sub_1")

        assert result.issued == 1
        assert result.skips[0].reason == SkipReason.NO_RULE
        assert result.skips[0].level == 2

    def test_max_depth_limits_walk(self, make_user, enable_referrals):
        enable_referrals(max_depth=1, enabled_levels=[1], reward_rules=THREE_LEVEL_RULES)
        u1, u2, u3 = build_chain(make_user, 3)

        result = reward_engine.issue_referral_rewards_for_event(u3, "subscription_paid", "sub_1")

        assert result.issued == 1
        assert result.skipped == 0

    def test_unknown_event_type(self, make_user, enable_referrals):
        enable_referrals()
        with pytest.raises(InvalidEventError):
            reward_engine.issue_referral_rewards_for_event(make_user(), "refund_issued", "r_1")

    def test_blank_reference(self, make_user, enable_referrals):
        enable_referrals()
        with pytest.raises(InvalidEventError):
            reward_engine.issue_referral_rewards_for_event(make_user(), "subscription_paid", "  ")


class TestIdempotency:
    def test_replay_issues_nothing(self, make_user, enable_referrals):
        enable_referrals(enabled_levels=[1, 2], reward_rules=THREE_LEVEL_RULES)
        u1, u2, u3 = build_chain(make_user, 3)

        first = reward_engine.issue_referral_rewards_for_event(u3, "payg_listing_fee_paid", "pay_1")
        replay = reward_engine.issue_referral_rewards_for_event(u3, "payg_listing_fee_paid", "pay_1")

        assert first.issued == 2
        assert replay.issued == 0
        assert {s.reason for s in replay.skips} == {SkipReason.ALREADY_ISSUED}
        assert reward_count() == 2
        assert credit_ledger.get_balance(u2, CreditType.LISTING_CREDIT) == 2.0

    def test_new_reference_pays_again(self, make_user, enable_referrals):
        enable_referrals()
        u1, u2 = build_chain(make_user, 2)

        reward_engine.issue_referral_rewards_for_event(u2, "payg_listing_fee_paid", "pay_1")
        reward_engine.issue_referral_rewards_for_event(u2, "payg_listing_fee_paid", "pay_2")

        assert reward_count() == 2
        assert credit_ledger.get_balance(u1, CreditType.LISTING_CREDIT) == 2.0

    def test_same_reference_different_event_type(self, make_user, enable_referrals):
        enable_referrals()
        u1, u2 = build_chain(make_user, 2)

        reward_engine.issue_referral_rewards_for_event(u2, "payg_listing_fee_paid", "ref_1")
        result = reward_engine.issue_referral_rewards_for_event(u2, "featured_purchase_paid", "ref_1")

        assert result.issued == 1

    def test_reward_and_ledger_entry_are_linked(self, make_user, enable_referrals):
        enable_referrals()
        u1, u2 = build_chain(make_user, 2)

        result = reward_engine.issue_referral_rewards_for_event(u2, "subscription_paid", "sub_1")

        with db.session() as session:
            entry = session.scalars(select(CreditLedgerEntry)).one()
        assert entry.reward_id == result.reward_ids[0]
        assert entry.source == "referral_reward"
        assert entry.user_id == u1


class TestCaps:
    def test_daily_cap_skips_silently(self, make_user, enable_referrals):
        enable_referrals(caps={"daily": 2, "monthly": 0})
        u1, u2 = build_chain(make_user, 2)
        now = datetime(2026, 10, 19, 12, 0)

        results = [
            reward_engine.issue_referral_rewards_for_event(u2, "subscription_paid", f"sub_{i}", issued_at=now)
            for i in range(3)
        ]

        assert [r.issued for r in results] == [1, 1, 0]
        assert results[2].skips[0].reason == SkipReason.CAPPED
        assert credit_ledger.get_balance(u1, CreditType.LISTING_CREDIT) == 2.0

    def test_daily_cap_resets_next_day(self, make_user, enable_referrals):
        enable_referrals(caps={"daily": 1, "monthly": 0})
        u1, u2 = build_chain(make_user, 2)
        day = datetime(2026, 10, 19, 23, 30)

        reward_engine.issue_referral_rewards_for_event(u2, "subscription_paid", "a", issued_at=day)
        result = reward_engine.issue_referral_rewards_for_event(
            u2, "subscription_paid", "b", issued_at=day + timedelta(hours=1)
        )

        assert result.issued == 1

    def test_monthly_cap(self, make_user, enable_referrals):
        enable_referrals(caps={"daily": 0, "monthly": 2})
        u1, u2 = build_chain(make_user, 2)

        issued = [
            reward_engine.issue_referral_rewards_for_event(
                u2, "subscription_paid", f"sub_{day}", issued_at=datetime(2026, 10, day, 9, 0)
            ).issued
            for day in (1, 2, 3)
        ]
        next_month = reward_engine.issue_referral_rewards_for_event(
            u2, "subscription_paid", "sub_nov", issued_at=datetime(2026, 11, 1, 9, 0)
        )

        assert issued == [1, 1, 0]
        assert next_month.issued == 1

    def test_zero_caps_are_unlimited(self, make_user, enable_referrals):
        enable_referrals(caps={"daily": 0, "monthly": 0})
        u1, u2 = build_chain(make_user, 2)

        for i in range(60):
            reward_engine.issue_referral_rewards_for_event(u2, "subscription_paid", f"sub_{i}")

        assert credit_ledger.get_balance(u1, CreditType.LISTING_CREDIT) == 60.0

    def test_replay_of_capped_period_reports_already_issued(self, make_user, enable_referrals):
        enable_referrals(caps={"daily": 1, "monthly": 0})
        u1, u2 = build_chain(make_user, 2)
        now = datetime(2026, 10, 19, 8, 0)

        reward_engine.issue_referral_rewards_for_event(u2, "subscription_paid", "sub_1", issued_at=now)
        replay = reward_engine.issue_referral_rewards_for_event(u2, "subscription_paid", "sub_1", issued_at=now)

        assert replay.skips[0].reason == SkipReason.ALREADY_ISSUED

    def test_earlier_day_is_not_capped_by_later_rewards(self, make_user, enable_referrals):
        enable_referrals(caps={"daily": 1, "monthly": 0})
        u1, u2 = build_chain(make_user, 2)

        reward_engine.issue_referral_rewards_for_event(
            u2, "subscription_paid", "sub_today", issued_at=datetime(2026, 10, 19, 9, 0)
        )
        # Redelivered late, dated the day before
        late = reward_engine.issue_referral_rewards_for_event(
            u2, "subscription_paid", "sub_yesterday", issued_at=datetime(2026, 10, 18, 9, 0)
        )

        assert late.issued == 1
        assert credit_ledger.get_balance(u1, CreditType.LISTING_CREDIT) == 2.0

    def test_earlier_month_is_not_capped_by_later_rewards(self, make_user, enable_referrals):
        enable_referrals(caps={"daily": 0, "monthly": 1})
        u1, u2 = build_chain(make_user, 2)

        reward_engine.issue_referral_rewards_for_event(
            u2, "subscription_paid", "sub_nov", issued_at=datetime(2026, 11, 2, 9, 0)
        )
        late = reward_engine.issue_referral_rewards_for_event(
            u2, "subscription_paid", "sub_oct", issued_at=datetime(2026, 10, 30, 9, 0)
        )

        assert late.issued == 1


class TestConcurrentIssuance:
    def test_losing_insert_reports_already_issued(self, make_user, enable_referrals, monkeypatch):
        enable_referrals()
        u1, u2 = build_chain(make_user, 2)
        reward_engine.issue_referral_rewards_for_event(u2, "subscription_paid", "sub_1")

        # The pre-check misses once, as if the winning transaction had not committed yet
        original = reward_engine._find_reward
        calls = []

        def stale_then_fresh(*args):
            calls.append(args)
            return None if len(calls) == 1 else original(*args)

        monkeypatch.setattr(reward_engine, "_find_reward", stale_then_fresh)

        replay = reward_engine.issue_referral_rewards_for_event(u2, "subscription_paid", "sub_1")

        assert replay.issued == 0
        assert [s.reason for s in replay.skips] == [SkipReason.ALREADY_ISSUED]
        assert reward_count() == 1
        assert credit_ledger.get_balance(u1, CreditType.LISTING_CREDIT) == 1.0
        assert len(calls) == 2
