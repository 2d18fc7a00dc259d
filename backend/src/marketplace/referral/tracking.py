"""Share-link tracking: click, capture and paid touch events per referral code.

Touch events feed the referrer's click -> signup -> paid funnel. They are
written after the operation that caused them has committed, and a failed
write is logged and dropped so tracking never blocks attribution or payouts.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from marketplace.logging_config import get_logger
from marketplace.referral.codes import CodeRegistry, code_registry, normalize_code
from marketplace.referral.models import ReferralCode, ReferralEdge, ReferralTouchEvent
from marketplace.settings import settings
from marketplace.storage.db import Database, db
from marketplace.timeutils import to_naive_utc

logger = get_logger(__name__)


class TouchEventType(str, Enum):
    """Steps of a share link's funnel."""
    CLICK = "click"
    CAPTURED = "captured"
    PAID_EVENT = "paid_event"


@dataclass
class ReferralFunnel:
    """Click -> signup -> paid counts for one referrer's share link."""
    clicks: int = 0
    signups: int = 0
    paid_referrals: int = 0

    @property
    def signup_rate(self) -> float:
        return round(self.signups / self.clicks, 4) if self.clicks else 0.0


def _clean(value: str | None, max_length: int) -> str | None:
    value = (value or "").strip()
    return value[:max_length] or None


def hash_ip_address(ip_address: str | None, salt: str = "") -> str | None:
    """Salted SHA-256 of a client address; raw addresses are never stored."""
    ip_address = (ip_address or "").strip()
    if not ip_address:
        return None
    return hashlib.sha256(f"{ip_address}:{salt}".encode()).hexdigest()


class ShareTracker:
    """Records touch events and reads the referrer funnel."""

    def __init__(
        self,
        database: Database | None = None,
        codes: CodeRegistry | None = None,
        enabled: bool | None = None,
    ):
        self.db = database or db
        self.codes = codes or code_registry
        self.enabled = settings.share_tracking_enabled if enabled is None else enabled
        self.logger = get_logger(__name__)

    def _record(self, event: ReferralTouchEvent) -> bool:
        try:
            with self.db.session() as session:
                session.add(event)
        except SQLAlchemyError as e:
            self.logger.warning(
                "referral_touch_event_failed",
                event_type=event.event_type,
                referral_code=event.referral_code,
                error=str(e),
            )
            return False
        return True

    def track_click(
        self,
        code: str | None,
        anon_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        referrer_url: str | None = None,
    ) -> bool:
        """Record a visit to a share link.

        Args:
            code: Referral code from the link
            anon_id: Visitor cookie id, if the client has one
            ip_address: Client address; only a salted hash is kept, and only when enabled
            user_agent: Client user agent
            referrer_url: Page the visitor came from

        Returns:
            False if the code is unknown
        """
        code = normalize_code(code)
        if not code or self.codes.resolve_code(code) is None:
            return False
        if not self.enabled:
            return True

        ip_hash = None
        if settings.share_tracking_store_ip_hash:
            ip_hash = hash_ip_address(ip_address, settings.share_tracking_ip_hash_salt)

        self._record(
            ReferralTouchEvent(
                referral_code=code,
                event_type=TouchEventType.CLICK.value,
                anon_id=_clean(anon_id, 120),
                ip_hash=ip_hash,
                user_agent=_clean(user_agent, 400),
                referrer_url=_clean(referrer_url, 500),
            )
        )
        self.logger.info("referral_click_tracked", code=code)
        return True

    def log_capture(self, code: str, referred_user_id: int) -> None:
        """Record that a signup through `code` was attributed."""
        if not self.enabled:
            return
        self._record(
            ReferralTouchEvent(
                referral_code=normalize_code(code),
                event_type=TouchEventType.CAPTURED.value,
                referred_user_id=referred_user_id,
            )
        )

    def log_paid_event(self, referred_user_id: int) -> None:
        """Record a paid event against the code that brought `referred_user_id` in."""
        if not self.enabled:
            return
        try:
            with self.db.session() as session:
                code = session.scalar(
                    select(ReferralCode.code)
                    .join(ReferralEdge, ReferralEdge.referrer_user_id == ReferralCode.user_id)
                    .where(ReferralEdge.referred_user_id == referred_user_id)
                )
                if code is None:
                    return
                session.add(
                    ReferralTouchEvent(
                        referral_code=code,
                        event_type=TouchEventType.PAID_EVENT.value,
                        referred_user_id=referred_user_id,
                    )
                )
        except SQLAlchemyError as e:
            self.logger.warning(
                "referral_touch_event_failed",
                event_type=TouchEventType.PAID_EVENT.value,
                referred_user_id=referred_user_id,
                error=str(e),
            )

    def get_funnel(self, user_id: int, since: datetime | None = None) -> ReferralFunnel:
        """Funnel of `user_id`'s share link, optionally from `since` onwards.

        Signups are direct referral edges; paid referrals are distinct
        referred users with at least one paid event.
        """
        code = self.codes.get_code(user_id)
        if code is None:
            return ReferralFunnel()
        since = to_naive_utc(since) if since else None

        with self.db.session() as session:
            clicks = select(func.count(ReferralTouchEvent.id)).where(
                ReferralTouchEvent.referral_code == code,
                ReferralTouchEvent.event_type == TouchEventType.CLICK.value,
            )
            signups = select(func.count(ReferralEdge.id)).where(ReferralEdge.referrer_user_id == user_id)
            paid = select(func.count(func.distinct(ReferralTouchEvent.referred_user_id))).where(
                ReferralTouchEvent.referral_code == code,
                ReferralTouchEvent.event_type == TouchEventType.PAID_EVENT.value,
            )
            if since is not None:
                clicks = clicks.where(ReferralTouchEvent.created_at >= since)
                signups = signups.where(ReferralEdge.created_at >= since)
                paid = paid.where(ReferralTouchEvent.created_at >= since)

            return ReferralFunnel(
                clicks=session.scalar(clicks) or 0,
                signups=session.scalar(signups) or 0,
                paid_referrals=session.scalar(paid) or 0,
            )


# Singleton instance
share_tracker = ShareTracker()
