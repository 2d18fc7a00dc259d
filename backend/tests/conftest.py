"""Shared fixtures.

The database URL must be set before anything from `marketplace` is imported,
since the global `db` is created at import time.
"""

import os

os.environ["MARKETPLACE_DATABASE_URL"] = "sqlite://"
os.environ["MARKETPLACE_ENV"] = "test"
os.environ["MARKETPLACE_INTERNAL_API_TOKEN"] = "test-internal-token"
os.environ["MARKETPLACE_POLICY_CACHE_TTL_SECONDS"] = "0"

import itertools  # noqa: E402

import pytest  # noqa: E402

from marketplace.policy.store import policy_store  # noqa: E402
from marketplace.storage.db import db  # noqa: E402
from marketplace.storage.models import UserAccount  # noqa: E402

_emails = itertools.count(1)


@pytest.fixture(autouse=True)
def clean_db():
    """Fresh schema and an empty policy cache for every test."""
    db.drop_tables()
    db.create_tables()
    policy_store.invalidate()
    yield
    policy_store.invalidate()


@pytest.fixture
def make_user():
    """Create a user account and return its id."""

    def _make(full_name: str | None = None, display_name: str | None = None, role: str = "agent") -> int:
        with db.session() as session:
            user = UserAccount(
                email=f"user{next(_emails)}@example.com",
                full_name=full_name,
                display_name=display_name,
                role=role,
            )
            session.add(user)
            session.flush()
            return user.id

    return _make


@pytest.fixture
def enable_referrals():
    """Turn the programme on, optionally overriding other policy keys."""

    def _enable(**overrides):
        policy_store.update("referrals_enabled", True)
        for key, value in overrides.items():
            policy_store.update(f"referrals_{key}", value)
        return policy_store.get_snapshot()

    return _enable
