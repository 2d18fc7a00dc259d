"""Tests for share-link tracking and the referrer funnel."""

from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from marketplace.referral.codes import code_registry
from marketplace.referral.dashboard import dashboard_service
from marketplace.referral.graph import AttributionGraph, attribution_graph
from marketplace.referral.models import ReferralTouchEvent
from marketplace.referral.rewards import RewardIssuanceEngine, reward_engine
from marketplace.referral.tracking import ShareTracker, hash_ip_address, share_tracker
from marketplace.settings import settings
from marketplace.storage.db import db


class UnavailableDatabase:
    """Stands in for a database whose connections all fail."""

    @contextmanager
    def session(self):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))
        yield


def events(event_type: str | None = None) -> list[ReferralTouchEvent]:
    with db.session() as session:
        query = select(ReferralTouchEvent).order_by(ReferralTouchEvent.id)
        if event_type:
            query = query.where(ReferralTouchEvent.event_type == event_type)
        return list(session.scalars(query))


def refer(referrer_id: int, referred_id: int):
    code = code_registry.ensure_referral_code(referrer_id).code
    attribution_graph.capture_referral_for_user(referred_id, code)
    return code


class TestClicks:
    def test_click_recorded(self, make_user):
        code = code_registry.ensure_referral_code(make_user()).code

        assert share_tracker.track_click(code.lower(), anon_id="visitor-1", user_agent="Mozilla/5.0") is True

        (click,) = events("click")
        assert click.referral_code == code
        assert click.anon_id == "visitor-1"
        assert click.ip_hash is None

    def test_unknown_code(self):
        assert share_tracker.track_click("NOPE2345") is False
        assert share_tracker.track_click("") is False
        assert events() == []

    def test_disabled_tracking_still_validates(self, make_user):
        code = code_registry.ensure_referral_code(make_user()).code
        tracker = ShareTracker(enabled=False)

        assert tracker.track_click(code) is True
        assert tracker.track_click("NOPE2345") is False
        assert events() == []

    def test_ip_hash_only_when_enabled(self, make_user, monkeypatch):
        code = code_registry.ensure_referral_code(make_user()).code
        monkeypatch.setattr(settings, "share_tracking_store_ip_hash", True)

        share_tracker.track_click(code, ip_address="203.0.113.9")

        (click,) = events("click")
        assert click.ip_hash == hash_ip_address("203.0.113.9", settings.share_tracking_ip_hash_salt)
        assert "203.0.113.9" not in click.ip_hash

    def test_hash_ip_address(self):
        assert hash_ip_address(None) is None
        assert hash_ip_address("  ") is None
        assert hash_ip_address("10.0.0.1", "a") != hash_ip_address("10.0.0.1", "b")
        assert len(hash_ip_address("10.0.0.1")) == 64


class TestLifecycleEvents:
    def test_capture_logs_captured(self, make_user):
        referrer, referred = make_user(), make_user()
        code = refer(referrer, referred)
        # Repeats are no-ops and log nothing
        refer(referrer, referred)

        (captured,) = events("captured")
        assert captured.referral_code == code
        assert captured.referred_user_id == referred

    def test_rejected_capture_logs_nothing(self, make_user):
        user_id = make_user()
        refer(user_id, user_id)
        assert events("captured") == []

    def test_paid_event_logged_once_per_new_reward(self, make_user, enable_referrals):
        enable_referrals()
        referrer, referred = make_user(), make_user()
        code = refer(referrer, referred)

        reward_engine.issue_referral_rewards_for_event(referred, "subscription_paid", "sub_1")
        reward_engine.issue_referral_rewards_for_event(referred, "subscription_paid", "sub_1")

        (paid,) = events("paid_event")
        assert paid.referral_code == code
        assert paid.referred_user_id == referred

    def test_paid_event_without_referrer_is_ignored(self, make_user):
        share_tracker.log_paid_event(make_user())
        assert events() == []

    def test_tracking_failure_does_not_block_capture(self, make_user):
        referrer, referred = make_user(), make_user()
        code = code_registry.ensure_referral_code(referrer).code
        graph = AttributionGraph(tracker=ShareTracker(database=UnavailableDatabase()))

        result = graph.capture_referral_for_user(referred, code)

        assert result.captured is True
        assert graph.get_edge(referred).referrer_user_id == referrer
        assert events() == []

    def test_tracking_failure_does_not_block_issuance(self, make_user, enable_referrals):
        enable_referrals()
        referrer, referred = make_user(), make_user()
        refer(referrer, referred)
        engine = RewardIssuanceEngine(tracker=ShareTracker(database=UnavailableDatabase()))

        result = engine.issue_referral_rewards_for_event(referred, "subscription_paid", "sub_1")

        assert result.issued == 1
        assert events("paid_event") == []


class TestFunnel:
    def test_click_signup_paid(self, make_user, enable_referrals):
        enable_referrals()
        referrer = make_user()
        paying, browsing = make_user(), make_user()
        code = refer(referrer, paying)
        refer(referrer, browsing)
        for _ in range(4):
            share_tracker.track_click(code)
        reward_engine.issue_referral_rewards_for_event(paying, "subscription_paid", "sub_1")
        reward_engine.issue_referral_rewards_for_event(paying, "subscription_paid", "sub_2")

        funnel = share_tracker.get_funnel(referrer)

        assert (funnel.clicks, funnel.signups, funnel.paid_referrals) == (4, 2, 1)
        assert funnel.signup_rate == 0.5

    def test_since_filters_old_events(self, make_user):
        referrer = make_user()
        code = code_registry.ensure_referral_code(referrer).code
        with db.session() as session:
            session.add(
                ReferralTouchEvent(referral_code=code, event_type="click", created_at=datetime(2026, 1, 5))
            )
            session.add(
                ReferralTouchEvent(referral_code=code, event_type="click", created_at=datetime(2026, 10, 12))
            )

        assert share_tracker.get_funnel(referrer).clicks == 2
        assert share_tracker.get_funnel(referrer, since=datetime(2026, 10, 1)).clicks == 1

    def test_no_code_is_empty(self, make_user):
        funnel = share_tracker.get_funnel(make_user())
        assert (funnel.clicks, funnel.signups, funnel.paid_referrals, funnel.signup_rate) == (0, 0, 0, 0.0)

    def test_dashboard_carries_funnel(self, make_user):
        referrer, referred = make_user(), make_user()
        code = refer(referrer, referred)
        share_tracker.track_click(code)

        funnel = dashboard_service.get_snapshot(referrer).funnel

        assert funnel.clicks == 1
        assert funnel.signups == 1
