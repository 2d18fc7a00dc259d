"""Referral policy snapshot and its parser.

The snapshot is an immutable value built once per load from the admin
``app_settings`` rows. Every engine call receives it explicitly.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping


class PolicyConfigError(ValueError):
    """Raised when stored referral configuration cannot be used."""
    pass


class CreditType(str, Enum):
    """Spendable credit types a reward can grant."""
    LISTING_CREDIT = "listing_credit"
    FEATURED_CREDIT = "featured_credit"
    DISCOUNT = "discount"


# Hard ceiling on attribution depth regardless of configuration
MAX_SUPPORTED_DEPTH = 5

# app_settings keys
KEY_ENABLED = "referrals_enabled"
KEY_MAX_DEPTH = "referrals_max_depth"
KEY_ENABLED_LEVELS = "referrals_enabled_levels"
KEY_REWARD_RULES = "referrals_reward_rules"
KEY_TIER_THRESHOLDS = "referrals_tier_thresholds"
KEY_CAPS = "referrals_caps"
KEY_LEADERBOARD = "referrals_leaderboard"

POLICY_KEYS = (
    KEY_ENABLED,
    KEY_MAX_DEPTH,
    KEY_ENABLED_LEVELS,
    KEY_REWARD_RULES,
    KEY_TIER_THRESHOLDS,
    KEY_CAPS,
    KEY_LEADERBOARD,
)


@dataclass(frozen=True)
class RewardRule:
    """What an ancestor at a given level earns per qualifying event."""
    credit_type: CreditType
    amount: float


@dataclass(frozen=True)
class RewardCaps:
    """Per-referrer issuance caps in reward amount; 0 disables a cap."""
    daily: int = 50
    monthly: int = 500


@dataclass(frozen=True)
class LeaderboardConfig:
    """Leaderboard visibility and privacy switches."""
    enabled: bool = True
    public_visible: bool = True
    monthly_enabled: bool = True
    all_time_enabled: bool = True
    initials_only: bool = False


DEFAULT_TIER_THRESHOLDS = {
    "Bronze": 0,
    "Silver": 5,
    "Gold": 15,
    "Platinum": 30,
}


@dataclass(frozen=True)
class PolicySnapshot:
    """Read-only referral configuration used by a single engine call."""
    enabled: bool = False
    max_depth: int = MAX_SUPPORTED_DEPTH
    enabled_levels: frozenset[int] = frozenset({1})
    reward_rules: Mapping[int, RewardRule] = field(
        default_factory=lambda: MappingProxyType({1: RewardRule(CreditType.LISTING_CREDIT, 1.0)})
    )
    tier_thresholds: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_TIER_THRESHOLDS))
    )
    caps: RewardCaps = field(default_factory=RewardCaps)
    leaderboard: LeaderboardConfig = field(default_factory=LeaderboardConfig)

    def rule_for(self, level: int) -> RewardRule | None:
        """Reward rule for a level, or None when the level pays nothing."""
        return self.reward_rules.get(level)

    def to_dict(self) -> dict[str, Any]:
        """Plain representation, shaped like the stored settings."""
        return {
            KEY_ENABLED: self.enabled,
            KEY_MAX_DEPTH: self.max_depth,
            KEY_ENABLED_LEVELS: sorted(self.enabled_levels),
            KEY_REWARD_RULES: {
                str(level): {"type": rule.credit_type.value, "amount": rule.amount}
                for level, rule in sorted(self.reward_rules.items())
            },
            KEY_TIER_THRESHOLDS: dict(self.tier_thresholds),
            KEY_CAPS: {"daily": self.caps.daily, "monthly": self.caps.monthly},
            KEY_LEADERBOARD: {
                "enabled": self.leaderboard.enabled,
                "public_visible": self.leaderboard.public_visible,
                "monthly_enabled": self.leaderboard.monthly_enabled,
                "all_time_enabled": self.leaderboard.all_time_enabled,
                "initials_only": self.leaderboard.initials_only,
            },
        }


DEFAULT_POLICY = PolicySnapshot()


# ==================== PARSING ====================


def _unwrap(value: Any) -> Any:
    """Settings may be stored bare or wrapped as {"value": ...}."""
    if isinstance(value, dict) and "value" in value:
        return value["value"]
    return value


def _as_bool(value: Any, default: bool) -> bool:
    value = _unwrap(value)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    raise PolicyConfigError(f"Expected a boolean, got {value!r}")


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise PolicyConfigError(f"{name}: expected a number, got {value!r}")
    try:
        return int(float(value))
    except (TypeError, ValueError):
        raise PolicyConfigError(f"{name}: expected a number, got {value!r}") from None


def _as_mapping(value: Any, name: str) -> dict:
    value = _unwrap(value)
    if not isinstance(value, dict):
        raise PolicyConfigError(f"{name}: expected an object, got {type(value).__name__}")
    return value


def clamp_depth(value: int) -> int:
    """Clamp a configured depth into 1..MAX_SUPPORTED_DEPTH."""
    return max(1, min(MAX_SUPPORTED_DEPTH, int(value)))


def parse_max_depth(value: Any) -> int:
    value = _unwrap(value)
    if value is None:
        return DEFAULT_POLICY.max_depth
    return clamp_depth(_as_int(value, KEY_MAX_DEPTH))


def parse_enabled_levels(value: Any, max_depth: int) -> frozenset[int]:
    """Parse enabled levels, dropping anything outside 1..max_depth."""
    value = _unwrap(value)
    if value is None:
        return DEFAULT_POLICY.enabled_levels
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise PolicyConfigError(f"{KEY_ENABLED_LEVELS}: expected a list, got {type(value).__name__}")

    levels = {_as_int(item, KEY_ENABLED_LEVELS) for item in value}
    return frozenset(level for level in levels if 1 <= level <= max_depth)


def parse_credit_type(value: Any) -> CreditType:
    """Parse a credit type, rejecting anything unknown."""
    try:
        return CreditType(str(value).strip().lower())
    except ValueError:
        raise PolicyConfigError(f"Unknown credit type: {value!r}") from None


def parse_reward_rules(value: Any) -> Mapping[int, RewardRule]:
    """Parse the level -> {type, amount} map."""
    if _unwrap(value) is None:
        return DEFAULT_POLICY.reward_rules

    rules: dict[int, RewardRule] = {}
    for key, raw_rule in _as_mapping(value, KEY_REWARD_RULES).items():
        level = _as_int(key, KEY_REWARD_RULES)
        if level < 1 or level > MAX_SUPPORTED_DEPTH:
            raise PolicyConfigError(f"{KEY_REWARD_RULES}: level {level} out of range")

        rule = _as_mapping(raw_rule, f"{KEY_REWARD_RULES}[{level}]")
        credit_type = parse_credit_type(rule.get("type", rule.get("credit_type")))
        try:
            amount = float(rule.get("amount"))
        except (TypeError, ValueError):
            raise PolicyConfigError(f"{KEY_REWARD_RULES}[{level}]: invalid amount") from None
        if amount <= 0 or amount != amount:
            raise PolicyConfigError(f"{KEY_REWARD_RULES}[{level}]: amount must be positive")

        rules[level] = RewardRule(credit_type=credit_type, amount=round(amount, 4))

    return MappingProxyType(dict(sorted(rules.items())))


def titleize_tier(name: str) -> str:
    """Normalise a tier name: "gold_plus" -> "Gold Plus"."""
    cleaned = re.sub(r"[_-]+", " ", name.strip())
    return " ".join(chunk.capitalize() for chunk in cleaned.split())


def parse_tier_thresholds(value: Any) -> Mapping[str, int]:
    """Parse tier minimums, ordered ascending. The lowest must be 0."""
    if _unwrap(value) is None:
        return DEFAULT_POLICY.tier_thresholds

    pairs = []
    for name, threshold in _as_mapping(value, KEY_TIER_THRESHOLDS).items():
        clean_name = titleize_tier(str(name))
        if not clean_name:
            raise PolicyConfigError(f"{KEY_TIER_THRESHOLDS}: empty tier name")
        pairs.append((clean_name, max(0, _as_int(threshold, KEY_TIER_THRESHOLDS))))

    if not pairs:
        raise PolicyConfigError(f"{KEY_TIER_THRESHOLDS}: at least one tier is required")

    pairs.sort(key=lambda pair: pair[1])
    if pairs[0][1] != 0:
        raise PolicyConfigError(f"{KEY_TIER_THRESHOLDS}: lowest tier must start at 0")

    return MappingProxyType(dict(pairs))


def parse_caps(value: Any) -> RewardCaps:
    if _unwrap(value) is None:
        return DEFAULT_POLICY.caps

    raw = _as_mapping(value, KEY_CAPS)
    daily = raw.get("daily", DEFAULT_POLICY.caps.daily)
    monthly = raw.get("monthly", DEFAULT_POLICY.caps.monthly)
    return RewardCaps(
        daily=max(0, _as_int(daily, f"{KEY_CAPS}.daily")),
        monthly=max(0, _as_int(monthly, f"{KEY_CAPS}.monthly")),
    )


def parse_leaderboard(value: Any) -> LeaderboardConfig:
    if _unwrap(value) is None:
        return DEFAULT_POLICY.leaderboard

    raw = _as_mapping(value, KEY_LEADERBOARD)
    defaults = DEFAULT_POLICY.leaderboard
    return LeaderboardConfig(
        enabled=_as_bool(raw.get("enabled"), defaults.enabled),
        public_visible=_as_bool(raw.get("public_visible"), defaults.public_visible),
        monthly_enabled=_as_bool(raw.get("monthly_enabled"), defaults.monthly_enabled),
        all_time_enabled=_as_bool(raw.get("all_time_enabled"), defaults.all_time_enabled),
        initials_only=_as_bool(raw.get("initials_only"), defaults.initials_only),
    )


def parse_policy(values: Mapping[str, Any]) -> PolicySnapshot:
    """Build a snapshot from a key -> value mapping of settings.

    Raises:
        PolicyConfigError: If any present value is malformed
    """
    max_depth = parse_max_depth(values.get(KEY_MAX_DEPTH))
    return PolicySnapshot(
        enabled=_as_bool(values.get(KEY_ENABLED), DEFAULT_POLICY.enabled),
        max_depth=max_depth,
        enabled_levels=parse_enabled_levels(values.get(KEY_ENABLED_LEVELS), max_depth),
        reward_rules=parse_reward_rules(values.get(KEY_REWARD_RULES)),
        tier_thresholds=parse_tier_thresholds(values.get(KEY_TIER_THRESHOLDS)),
        caps=parse_caps(values.get(KEY_CAPS)),
        leaderboard=parse_leaderboard(values.get(KEY_LEADERBOARD)),
    )


def parse_policy_rows(rows: Iterable[Any]) -> PolicySnapshot:
    """Build a snapshot from AppSetting rows (anything with .key and .value)."""
    return parse_policy({row.key: row.value for row in rows})
