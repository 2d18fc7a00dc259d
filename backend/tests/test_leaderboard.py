"""Tests for leaderboard ranking and snapshots."""

from datetime import datetime

from sqlalchemy.exc import OperationalError

from marketplace.leaderboard.ranking import (
    RankInput,
    normalize_display_name,
    rank_leaderboard_rows,
)
from marketplace.leaderboard.service import LeaderboardService, LeaderboardWindow, leaderboard_service
from marketplace.policy.snapshot import LeaderboardConfig, PolicySnapshot
from marketplace.referral.models import ReferralReward
from marketplace.storage.db import db
from marketplace.storage.models import AppSetting

NOW = datetime(2026, 10, 19, 12, 0)
LAST_MONTH = datetime(2026, 9, 20, 12, 0)


def add_rewards(referrer_id: int, referred_ids, issued_at: datetime = NOW):
    with db.session() as session:
        for index, referred_id in enumerate(referred_ids):
            session.add(
                ReferralReward(
                    referrer_user_id=referrer_id,
                    referred_user_id=referred_id,
                    level=1,
                    event_type="subscription_paid",
                    event_reference=f"sub_{referrer_id}_{referred_id}_{index}_{issued_at:%m}",
                    credit_type="listing_credit",
                    amount=1.0,
                    issued_at=issued_at,
                )
            )


def row(user_id: int, name: str, active: int, opted_out: bool = False) -> RankInput:
    return RankInput(user_id=user_id, display_name=name, tier="Bronze", active_referrals=active, opted_out=opted_out)


class TestRanking:
    def test_ties_share_rank(self):
        ranked = rank_leaderboard_rows(
            [row(1, "Dee", 3), row(2, "Bea", 7), row(3, "Al", 10), row(4, "Cy", 7)]
        )
        assert [entry.rank for entry in ranked] == [1, 2, 2, 4]
        assert [entry.display_name for entry in ranked] == ["Al", "Bea", "Cy", "Dee"]

    def test_tie_break_on_user_id(self):
        ranked = rank_leaderboard_rows([row(9, "Sam", 1), row(4, "Sam", 1)])
        assert [entry.user_id for entry in ranked] == [4, 9]
        assert [entry.rank for entry in ranked] == [1, 1]


class TestDisplayName:
    def test_full_name(self):
        assert normalize_display_name("  Ada   Lovelace ", 1) == "Ada Lovelace"

    def test_initials(self):
        assert normalize_display_name("ada mary lovelace", 1, initials_only=True) == "A. lovelace"
        assert normalize_display_name("Ada", 1, initials_only=True) == "A."

    def test_fallback(self):
        assert normalize_display_name(None, 1234567) == "Agent 123456"
        assert normalize_display_name("   ", 42) == "Agent 42"


class TestSnapshot:
    def test_ranks_agents_by_active_referrals(self, make_user):
        ada = make_user("Ada Lovelace")
        bob = make_user("Bob Builder")
        cat = make_user("Cat Stevens", role="landlord")
        make_user("Tenant Tom", role="tenant")
        add_rewards(ada, [101, 102, 103])
        add_rewards(bob, [104])
        add_rewards(cat, [105, 106, 107])

        snapshot = leaderboard_service.get_snapshot(bob, window=LeaderboardWindow.ALL_TIME, now=NOW)
        board = snapshot.window("all_time")

        assert snapshot.available is True
        assert [(e.display_name, e.rank) for e in board.entries] == [
            ("Ada Lovelace", 1),
            ("Cat Stevens", 1),
            ("Bob Builder", 3),
        ]
        assert board.total_agents == 3
        assert board.my_rank == 3
        assert board.my_active_referrals == 1
        assert [e.is_you for e in board.entries] == [False, False, True]

    def test_counts_distinct_referred_users(self, make_user):
        ada = make_user("Ada")
        bob = make_user("Bob")
        add_rewards(ada, [101, 101, 102])
        add_rewards(bob, [103], issued_at=LAST_MONTH)

        snapshot = leaderboard_service.get_snapshot(ada, now=NOW)

        assert snapshot.window("all_time").my_active_referrals == 2
        assert [(e.display_name, e.active_referrals) for e in snapshot.window("all_time").entries] == [
            ("Ada", 2),
            ("Bob", 1),
        ]
        assert [(e.display_name, e.active_referrals) for e in snapshot.window("month").entries] == [
            ("Ada", 2),
            ("Bob", 0),
        ]

    def test_monthly_window_excludes_older_rewards(self, make_user):
        ada = make_user("Ada")
        bob = make_user("Bob")
        add_rewards(ada, [101, 102], issued_at=LAST_MONTH)
        add_rewards(bob, [103])

        snapshot = leaderboard_service.get_snapshot(ada, now=NOW)

        assert snapshot.default_window == LeaderboardWindow.MONTH
        month = snapshot.window(LeaderboardWindow.MONTH)
        all_time = snapshot.window(LeaderboardWindow.ALL_TIME)
        assert month.entries[0].display_name == "Bob"
        assert month.my_active_referrals == 0
        assert all_time.entries[0].display_name == "Ada"

    def test_opted_out_users_hidden_but_ranked(self, make_user):
        ada = make_user("Ada")
        bob = make_user("Bob")
        add_rewards(ada, [101, 102])
        add_rewards(bob, [103])
        assert leaderboard_service.set_opt_out(ada, True) is True

        public = leaderboard_service.get_snapshot(bob, window="all_time", now=NOW)
        own = leaderboard_service.get_snapshot(ada, window="all_time", now=NOW)

        board = public.window("all_time")
        assert [e.display_name for e in board.entries] == ["Bob"]
        assert board.entries[0].rank == 2
        assert own.user_opted_out is True
        assert own.window("all_time").my_rank == 1

    def test_opt_out_unknown_user(self):
        assert leaderboard_service.set_opt_out(999, True) is False

    def test_initials_only(self, make_user):
        make_user("Ada Lovelace")
        policy = PolicySnapshot(leaderboard=LeaderboardConfig(initials_only=True))

        snapshot = leaderboard_service.get_snapshot(0, window="all_time", now=NOW, policy=policy)

        assert snapshot.window("all_time").entries[0].display_name == "A. Lovelace"

    def test_top_limit(self, make_user):
        for i in range(5):
            make_user(f"Agent {i}")
        snapshot = leaderboard_service.get_snapshot(0, window="all_time", top_limit=2, now=NOW)
        assert len(snapshot.window("all_time").entries) == 2
        assert snapshot.window("all_time").total_agents == 5

    def test_not_public(self, make_user):
        me = make_user("Ada")
        add_rewards(me, [101])
        policy = PolicySnapshot(leaderboard=LeaderboardConfig(public_visible=False))

        board = leaderboard_service.get_snapshot(me, window="all_time", now=NOW, policy=policy).window("all_time")

        assert board.entries == []
        assert board.my_rank == 1

    def test_disabled(self, make_user):
        make_user("Ada")
        policy = PolicySnapshot(leaderboard=LeaderboardConfig(enabled=False))

        snapshot = leaderboard_service.get_snapshot(0, now=NOW, policy=policy)

        assert snapshot.available is True
        assert snapshot.enabled is False
        assert all(not window.entries for window in snapshot.windows)

    def test_only_all_time_window(self):
        policy = PolicySnapshot(leaderboard=LeaderboardConfig(monthly_enabled=False))
        snapshot = leaderboard_service.get_snapshot(0, now=NOW, policy=policy)
        assert snapshot.available_windows == [LeaderboardWindow.ALL_TIME]
        assert snapshot.default_window == LeaderboardWindow.ALL_TIME

    def test_invalid_policy_is_unavailable(self):
        with db.session() as session:
            session.add(AppSetting(key="referrals_leaderboard", value="broken"))

        snapshot = LeaderboardService().get_snapshot(1, now=NOW)

        assert snapshot.available is False
        assert snapshot.windows == []

    def test_store_error_is_unavailable(self, make_user, monkeypatch):
        make_user("Ada")
        service = LeaderboardService()

        def database_down(now):
            raise OperationalError("SELECT user_accounts", {}, Exception("connection refused"))

        monkeypatch.setattr(service, "_load", database_down)

        snapshot = service.get_snapshot(1, now=NOW)

        assert snapshot.available is False
        assert snapshot.windows == []

    def test_no_amounts_exposed(self, make_user):
        ada = make_user("Ada")
        add_rewards(ada, [101])
        entry = leaderboard_service.get_snapshot(ada, window="all_time", now=NOW).window("all_time").entries[0]
        assert not hasattr(entry, "amount")
        assert not hasattr(entry, "credits")
