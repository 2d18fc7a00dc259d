"""Policy store: loads and caches referral policy snapshots."""

import threading
import time
from typing import Any, Callable

from sqlalchemy import select

from marketplace.logging_config import get_logger
from marketplace.policy.snapshot import POLICY_KEYS, PolicyConfigError, PolicySnapshot, parse_policy
from marketplace.settings import settings
from marketplace.storage.db import Database, db
from marketplace.storage.models import AppSetting
from marketplace.timeutils import utcnow

logger = get_logger(__name__)


class PolicyStore:
    """Short-TTL cache in front of the referral settings rows.

    The engine never mutates policy; `update` exists for the admin surface and
    the CLI and validates the whole resulting configuration before writing.
    """

    def __init__(
        self,
        database: Database | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = database or db
        self.ttl_seconds = settings.policy_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: PolicySnapshot | None = None
        self._loaded_at = 0.0

    def _load_values(self) -> dict[str, Any]:
        with self.db.session() as session:
            rows = session.scalars(
                select(AppSetting).where(AppSetting.key.in_(POLICY_KEYS))
            ).all()
            return {row.key: row.value for row in rows}

    def get_snapshot(self) -> PolicySnapshot:
        """Return the current policy, reloading when the cache has expired.

        Raises:
            PolicyConfigError: If the stored configuration is invalid
        """
        with self._lock:
            now = self._clock()
            if self._cached is not None and now - self._loaded_at < self.ttl_seconds:
                return self._cached

            try:
                snapshot = parse_policy(self._load_values())
            except PolicyConfigError as e:
                logger.error("referral_policy_invalid", error=str(e))
                raise

            self._cached = snapshot
            self._loaded_at = now
            logger.debug("referral_policy_loaded", enabled=snapshot.enabled, max_depth=snapshot.max_depth)
            return snapshot

    def invalidate(self) -> None:
        """Drop the cached snapshot."""
        with self._lock:
            self._cached = None
            self._loaded_at = 0.0

    def update(self, key: str, value: Any) -> PolicySnapshot:
        """Persist one policy setting after validating the merged configuration.

        Args:
            key: One of the referral policy keys
            value: JSON-serialisable value

        Returns:
            The snapshot the new configuration parses to

        Raises:
            PolicyConfigError: If the key is unknown or the result is invalid
        """
        if key not in POLICY_KEYS:
            raise PolicyConfigError(f"Unknown policy key: {key}")

        values = self._load_values()
        values[key] = value
        snapshot = parse_policy(values)

        with self.db.session() as session:
            row = session.get(AppSetting, key)
            if row is None:
                session.add(AppSetting(key=key, value=value, updated_at=utcnow()))
            else:
                row.value = value
                row.updated_at = utcnow()

        self.invalidate()
        logger.info("referral_policy_updated", key=key)
        return snapshot


# Singleton instance
policy_store = PolicyStore()
