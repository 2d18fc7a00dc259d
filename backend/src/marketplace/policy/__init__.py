"""Referral policy: configuration snapshot, parser and cached store."""

from marketplace.policy.snapshot import (
    DEFAULT_POLICY,
    MAX_SUPPORTED_DEPTH,
    CreditType,
    LeaderboardConfig,
    PolicyConfigError,
    PolicySnapshot,
    RewardCaps,
    RewardRule,
    parse_policy,
    parse_policy_rows,
)
from marketplace.policy.store import PolicyStore, policy_store

__all__ = [
    "DEFAULT_POLICY",
    "MAX_SUPPORTED_DEPTH",
    "CreditType",
    "LeaderboardConfig",
    "PolicyConfigError",
    "PolicySnapshot",
    "PolicyStore",
    "RewardCaps",
    "RewardRule",
    "parse_policy",
    "parse_policy_rows",
    "policy_store",
]
