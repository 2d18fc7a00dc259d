"""Referral tier classification."""

from dataclasses import dataclass
from typing import Mapping

DEFAULT_TIER = "Bronze"


@dataclass
class TierStatus:
    """Where a referrer stands on the tier ladder."""
    current_tier: str
    next_tier: str | None
    current_threshold: int
    next_threshold: int | None
    progress_to_next: int  # 0-100


def resolve_referral_tier_status(active_referrals: int, thresholds: Mapping[str, int]) -> TierStatus:
    """Get the highest tier whose minimum is <= the active referral count.

    Args:
        active_referrals: Distinct active referrals
        thresholds: Tier name -> minimum active referrals

    Returns:
        Tier status, including progress towards the next tier
    """
    points = max(0, int(active_referrals))
    ordered = sorted(thresholds.items(), key=lambda item: item[1])

    if not ordered:
        return TierStatus(
            current_tier=DEFAULT_TIER,
            next_tier=None,
            current_threshold=0,
            next_threshold=None,
            progress_to_next=100,
        )

    current = ordered[0]
    following: tuple[str, int] | None = ordered[1] if len(ordered) > 1 else None
    for index, candidate in enumerate(ordered):
        if points >= candidate[1]:
            current = candidate
            following = ordered[index + 1] if index + 1 < len(ordered) else None

    if following is None:
        return TierStatus(
            current_tier=current[0],
            next_tier=None,
            current_threshold=current[1],
            next_threshold=None,
            progress_to_next=100,
        )

    span = max(1, following[1] - current[1])
    progressed = max(0, points - current[1])
    progress = max(0, min(100, round(progressed / span * 100)))

    return TierStatus(
        current_tier=current[0],
        next_tier=following[0],
        current_threshold=current[1],
        next_threshold=following[1],
        progress_to_next=progress,
    )
