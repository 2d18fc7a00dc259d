"""Code registry: one shareable referral code per user."""

import secrets
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from marketplace.logging_config import get_logger
from marketplace.referral.errors import CodeGenerationExhausted
from marketplace.referral.models import ReferralCode
from marketplace.settings import settings
from marketplace.storage.db import Database, db, is_unique_violation

logger = get_logger(__name__)

# Uppercase letters and digits without the look-alikes 0, O, 1, I
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_code_candidate(length: int = 8) -> str:
    """Generate a random, readable referral code.

    Format: ABC12XYZ (8 chars by default)
    """
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str | None) -> str:
    """Canonical form used for storage and lookups."""
    return (code or "").strip().upper()


@dataclass
class CodeResult:
    """A user's referral code; `created` is True only for the call that made it."""
    user_id: int
    code: str
    created: bool


class CodeRegistry:
    """Issues and resolves referral codes."""

    def __init__(
        self,
        database: Database | None = None,
        generator: Callable[[], str] | None = None,
        max_attempts: int | None = None,
    ):
        self.db = database or db
        self.generator = generator or (lambda: generate_code_candidate(settings.referral_code_length))
        self.max_attempts = max_attempts or settings.referral_code_max_attempts
        self.logger = get_logger(__name__)

    def get_code(self, user_id: int) -> str | None:
        """Existing code for a user, if any."""
        with self.db.session() as session:
            return session.scalar(select(ReferralCode.code).where(ReferralCode.user_id == user_id))

    def ensure_referral_code(self, user_id: int) -> CodeResult:
        """Get the user's code, creating it on first use.

        Args:
            user_id: User ID

        Returns:
            Code result

        Raises:
            CodeGenerationExhausted: If every candidate collided
        """
        existing = self.get_code(user_id)
        if existing:
            return CodeResult(user_id=user_id, code=existing, created=False)

        for attempt in range(1, self.max_attempts + 1):
            candidate = normalize_code(self.generator())
            try:
                with self.db.session() as session:
                    session.add(ReferralCode(user_id=user_id, code=candidate))
            except IntegrityError as e:
                if not is_unique_violation(e):
                    raise

                # A concurrent call may have created this user's code first
                winner = self.get_code(user_id)
                if winner:
                    return CodeResult(user_id=user_id, code=winner, created=False)

                self.logger.info("referral_code_collision", user_id=user_id, attempt=attempt)
                continue

            self.logger.info("referral_code_created", user_id=user_id, code=candidate)
            return CodeResult(user_id=user_id, code=candidate, created=True)

        self.logger.error("referral_code_exhausted", user_id=user_id, attempts=self.max_attempts)
        raise CodeGenerationExhausted(user_id, self.max_attempts)

    def resolve_code(self, code: str | None) -> int | None:
        """Owner of a referral code, or None if unknown."""
        code = normalize_code(code)
        if not code:
            return None

        with self.db.session() as session:
            return session.scalar(select(ReferralCode.user_id).where(ReferralCode.code == code))


# Singleton instance
code_registry = CodeRegistry()
