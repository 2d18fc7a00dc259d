"""Pure ranking helpers for the referral leaderboard."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable


@dataclass
class RankInput:
    user_id: int
    display_name: str
    tier: str
    active_referrals: int
    opted_out: bool = False
    joined_at: datetime | None = None


@dataclass
class RankedEntry:
    user_id: int
    rank: int
    display_name: str
    tier: str
    active_referrals: int
    opted_out: bool = False
    joined_at: datetime | None = None
    is_you: bool = False


def rank_leaderboard_rows(rows: Iterable[RankInput]) -> list[RankedEntry]:
    """Sort and assign competition ranks.

    Ties share a rank; the next lower score is ranked by its position, so
    scores [10, 7, 7, 3] rank [1, 2, 2, 4].
    """
    ordered = sorted(rows, key=lambda row: (-row.active_referrals, row.display_name, row.user_id))

    ranked: list[RankedEntry] = []
    last_score: int | None = None
    rank = 0
    for index, row in enumerate(ordered):
        if last_score is None or row.active_referrals < last_score:
            rank = index + 1
            last_score = row.active_referrals
        ranked.append(
            RankedEntry(
                user_id=row.user_id,
                rank=rank,
                display_name=row.display_name,
                tier=row.tier,
                active_referrals=row.active_referrals,
                opted_out=row.opted_out,
                joined_at=row.joined_at,
            )
        )
    return ranked


def normalize_display_name(name: str | None, user_id: int, initials_only: bool = False) -> str:
    """Public name for a leaderboard row.

    With `initials_only`, "Ada Mary Lovelace" becomes "A. Lovelace" and a
    single name "Ada" becomes "A.".
    """
    raw = " ".join((name or "").split())
    if not raw:
        return f"Agent {str(user_id)[:6]}"

    if not initials_only:
        return raw

    parts = raw.split(" ")
    first_initial = parts[0][0].upper()
    if len(parts) == 1:
        return f"{first_initial}."
    return f"{first_initial}. {parts[-1]}"
