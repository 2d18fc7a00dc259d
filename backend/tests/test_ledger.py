"""Tests for the credit ledger."""

import pytest

from marketplace.ledger.models import LedgerSource
from marketplace.ledger.service import CreditLedger, InsufficientCreditsError, SpendConflictError, credit_ledger
from marketplace.policy.snapshot import CreditType
from marketplace.storage.db import db


def grant(user_id: int, amount: float, credit_type: CreditType = CreditType.LISTING_CREDIT, ref: str = "g1"):
    with db.session() as session:
        credit_ledger.append_entry(
            session,
            user_id=user_id,
            credit_type=credit_type,
            delta=amount,
            source=LedgerSource.MILESTONE_BONUS,
            source_ref=ref,
        )


class TestBalances:
    def test_empty_balances_are_zero_filled(self, make_user):
        balances = credit_ledger.get_balances(make_user())
        assert balances == {"listing_credit": 0.0, "featured_credit": 0.0, "discount": 0.0}

    def test_balance_per_type(self, make_user):
        user_id = make_user()
        grant(user_id, 3, ref="a")
        grant(user_id, 2, CreditType.FEATURED_CREDIT, ref="b")

        assert credit_ledger.get_balance(user_id, "listing_credit") == 3.0
        assert credit_ledger.get_balances(user_id)["featured_credit"] == 2.0

    def test_zero_delta_rejected(self, make_user):
        with pytest.raises(ValueError):
            grant(make_user(), 0)


class TestSpend:
    def test_spend_reduces_balance(self, make_user):
        user_id = make_user()
        grant(user_id, 5)

        result = credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 2, "listing_42")

        assert result.balance_after == 3.0
        assert result.replayed is False
        assert credit_ledger.get_balance(user_id, CreditType.LISTING_CREDIT) == 3.0

    def test_insufficient_credits(self, make_user):
        user_id = make_user()
        grant(user_id, 1)

        with pytest.raises(InsufficientCreditsError) as exc:
            credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 2, "listing_42")

        assert exc.value.available == 1.0
        assert credit_ledger.get_balance(user_id, CreditType.LISTING_CREDIT) == 1.0

    def test_same_reference_spends_once(self, make_user):
        user_id = make_user()
        grant(user_id, 5)

        first = credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 2, "listing_42")
        again = credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 2, "listing_42")

        assert again.replayed is True
        assert again.entry.id == first.entry.id
        assert credit_ledger.get_balance(user_id, CreditType.LISTING_CREDIT) == 3.0

    def test_reference_reused_with_other_amount(self, make_user):
        user_id = make_user()
        grant(user_id, 5)
        credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 2, "listing_42")

        with pytest.raises(SpendConflictError) as exc:
            credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 3, "listing_42")

        assert exc.value.amount == 2.0
        assert credit_ledger.get_balance(user_id, CreditType.LISTING_CREDIT) == 3.0

    def test_reference_reused_with_other_type(self, make_user):
        user_id = make_user()
        grant(user_id, 5)
        grant(user_id, 5, CreditType.FEATURED_CREDIT, ref="f1")
        credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 2, "listing_42")

        with pytest.raises(SpendConflictError):
            credit_ledger.spend(user_id, CreditType.FEATURED_CREDIT, 2, "listing_42")

        assert credit_ledger.get_balance(user_id, CreditType.FEATURED_CREDIT) == 5.0

    def test_invalid_arguments(self, make_user):
        user_id = make_user()
        with pytest.raises(ValueError):
            credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 0, "x")
        with pytest.raises(ValueError):
            credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 1, " ")
        with pytest.raises(ValueError):
            credit_ledger.spend(user_id, "gold_bars", 1, "x")


class TestHistory:
    def test_newest_first(self, make_user):
        user_id = make_user()
        grant(user_id, 5, ref="a")
        credit_ledger.spend(user_id, CreditType.LISTING_CREDIT, 1, "listing_1")

        history = CreditLedger().history(user_id)

        assert [entry.delta for entry in history] == [-1.0, 5.0]
        assert history[0].source == "spend"
