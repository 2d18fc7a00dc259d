"""Credit ledger database models."""

from enum import Enum

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint

from marketplace.storage.models import Base
from marketplace.timeutils import utcnow


class LedgerSource(str, Enum):
    """What caused a ledger entry."""
    REFERRAL_REWARD = "referral_reward"    # Issued by the reward engine
    MILESTONE_BONUS = "milestone_bonus"    # Claimed referral milestone
    SPEND = "spend"                        # Listing publish, featured placement


class CreditLedgerEntry(Base):
    """Append-only credit movement.

    Balance for a user and credit type is the sum of `delta`. The
    (user, credit type, source, source_ref) key makes every write safe to retry.
    """
    __tablename__ = "credit_ledger"
    __table_args__ = (
        UniqueConstraint("user_id", "credit_type", "source", "source_ref", name="uq_credit_ledger_source"),
        Index("ix_credit_ledger_user_type", "user_id", "credit_type"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)

    credit_type = Column(String(30), nullable=False)
    delta = Column(Float, nullable=False)  # Positive = earned, negative = spent

    source = Column(String(30), nullable=False)
    source_ref = Column(String(255), nullable=False)
    reward_id = Column(Integer, ForeignKey("referral_rewards.id"), nullable=True, unique=True)
    description = Column(String(500), nullable=True)

    issued_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<CreditLedgerEntry(user={self.user_id}, type={self.credit_type}, delta={self.delta})>"
