"""Attribution graph: referral edge capture and ancestor resolution.

The graph is a flat edge table keyed by referred user. Depth is capped at
capture time, which keeps the edge set a forest of bounded height; ancestor
walks are iterative lookups that never exceed the requested depth.
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.logging_config import get_logger
from marketplace.policy.snapshot import MAX_SUPPORTED_DEPTH, clamp_depth
from marketplace.referral.codes import CodeRegistry, code_registry, normalize_code
from marketplace.referral.errors import CodeNotFound
from marketplace.referral.models import ReferralEdge
from marketplace.referral.tracking import ShareTracker, share_tracker
from marketplace.storage.db import Database, db, is_unique_violation

logger = get_logger(__name__)

REASON_ALREADY_CAPTURED = "already_captured"
REASON_SELF_REFERRAL = "self_referral"
REASON_DEPTH_LIMIT = "depth_limit"


@dataclass
class CaptureResult:
    """Outcome of a capture attempt. Every outcome is a success (`ok`)."""
    captured: bool
    reason: str | None = None
    depth: int | None = None
    referrer_user_id: int | None = None
    ok: bool = True


@dataclass(frozen=True)
class Ancestor:
    """An upstream referrer; level 1 is the immediate referrer."""
    user_id: int
    level: int


class AttributionGraph:
    """Captures referral edges and walks them upwards."""

    def __init__(
        self,
        database: Database | None = None,
        codes: CodeRegistry | None = None,
        tracker: ShareTracker | None = None,
    ):
        self.db = database or db
        self.codes = codes or code_registry
        self.tracker = tracker or share_tracker
        self.logger = get_logger(__name__)

    @staticmethod
    def _edge_for(session: Session, user_id: int) -> ReferralEdge | None:
        return session.scalars(
            select(ReferralEdge).where(ReferralEdge.referred_user_id == user_id)
        ).first()

    def get_edge(self, user_id: int) -> ReferralEdge | None:
        """The edge recording who referred `user_id`, if any."""
        with self.db.session() as session:
            return self._edge_for(session, user_id)

    def capture_referral_for_user(
        self,
        referred_user_id: int,
        referral_code: str,
        max_depth: int = MAX_SUPPORTED_DEPTH,
    ) -> CaptureResult:
        """Attribute a new user to the owner of `referral_code`.

        Safe to call more than once: a user already attributed stays attributed
        to their first referrer.

        Args:
            referred_user_id: The newly created user
            referral_code: Code supplied at signup
            max_depth: Deepest edge allowed

        Returns:
            Capture result

        Raises:
            CodeNotFound: If the code does not exist
        """
        code = normalize_code(referral_code)
        referrer_user_id = self.codes.resolve_code(code)
        if referrer_user_id is None:
            raise CodeNotFound(code)

        max_depth = clamp_depth(max_depth)

        with self.db.session() as session:
            if self._edge_for(session, referred_user_id) is not None:
                return CaptureResult(captured=False, reason=REASON_ALREADY_CAPTURED)

            if referrer_user_id == referred_user_id:
                return CaptureResult(captured=False, reason=REASON_SELF_REFERRAL)

            parent = self._edge_for(session, referrer_user_id)
            depth = (parent.depth if parent else 0) + 1
            if depth > max_depth:
                self.logger.info(
                    "referral_depth_limit",
                    referred_user_id=referred_user_id,
                    referrer_user_id=referrer_user_id,
                    depth=depth,
                    max_depth=max_depth,
                )
                return CaptureResult(captured=False, reason=REASON_DEPTH_LIMIT)

        try:
            with self.db.session() as session:
                session.add(
                    ReferralEdge(
                        referred_user_id=referred_user_id,
                        referrer_user_id=referrer_user_id,
                        depth=depth,
                    )
                )
        except IntegrityError as e:
            if not is_unique_violation(e) or self.get_edge(referred_user_id) is None:
                raise
            # Lost the race against a concurrent capture for the same user
            return CaptureResult(captured=False, reason=REASON_ALREADY_CAPTURED)

        self.logger.info(
            "referral_captured",
            referred_user_id=referred_user_id,
            referrer_user_id=referrer_user_id,
            depth=depth,
        )
        self.tracker.log_capture(code, referred_user_id)
        return CaptureResult(captured=True, depth=depth, referrer_user_id=referrer_user_id)

    def get_referral_ancestors(self, user_id: int, max_depth: int = MAX_SUPPORTED_DEPTH) -> list[Ancestor]:
        """Walk up from `user_id`, nearest referrer first.

        Stops at a root, after `max_depth` levels, or when a user repeats.
        """
        max_depth = clamp_depth(max_depth)
        chain: list[Ancestor] = []
        seen = {user_id}
        cursor = user_id

        with self.db.session() as session:
            for level in range(1, max_depth + 1):
                edge = self._edge_for(session, cursor)
                if edge is None:
                    break

                parent = edge.referrer_user_id
                if parent in seen:
                    self.logger.warning("referral_cycle_detected", user_id=user_id, at_user_id=parent)
                    break

                chain.append(Ancestor(user_id=parent, level=level))
                seen.add(parent)
                cursor = parent

        return chain


# Singleton instance
attribution_graph = AttributionGraph()
