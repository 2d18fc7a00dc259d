"""Referral system database models."""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint

from marketplace.storage.models import Base
from marketplace.timeutils import utcnow


class ReferralCode(Base):
    """Unique referral code for each user.

    Each user gets one code, created lazily the first time it is needed.
    Codes are never changed or deleted.
    """
    __tablename__ = "referral_codes"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, unique=True)
    code = Column(String(20), unique=True, nullable=False, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ReferralCode(user={self.user_id}, code={self.code})>"


class ReferralEdge(Base):
    """Who referred whom.

    One row per referred user, ever. `depth` is the position of the edge in its
    chain: 1 for a direct referral by a root user, parent depth + 1 otherwise.
    """
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True)
    referred_user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, unique=True)
    referrer_user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    depth = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ReferralEdge(referrer={self.referrer_user_id}, referred={self.referred_user_id}, depth={self.depth})>"


class ReferralReward(Base):
    """Reward issued to an ancestor for a referred user's paid event.

    The unique constraint is the idempotency key: redelivered events collide
    here instead of paying twice.
    """
    __tablename__ = "referral_rewards"
    __table_args__ = (
        UniqueConstraint(
            "referrer_user_id",
            "referred_user_id",
            "level",
            "event_type",
            "event_reference",
            name="uq_referral_rewards_idempotency",
        ),
    )

    id = Column(Integer, primary_key=True)
    referrer_user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    referred_user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    level = Column(Integer, nullable=False)

    # Source event
    event_type = Column(String(50), nullable=False)
    event_reference = Column(String(255), nullable=False)

    # Reward
    credit_type = Column(String(30), nullable=False)
    amount = Column(Float, nullable=False)

    issued_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<ReferralReward(referrer={self.referrer_user_id}, referred={self.referred_user_id}, level={self.level})>"


class ReferralTouchEvent(Base):
    """A step of a share link's funnel: click, captured signup or paid event.

    Append-only analytics. Nothing in attribution or issuance reads these rows.
    """
    __tablename__ = "referral_touch_events"
    __table_args__ = (
        Index("ix_referral_touch_events_code_type", "referral_code", "event_type"),
    )

    id = Column(Integer, primary_key=True)
    referral_code = Column(String(20), nullable=False)
    event_type = Column(String(20), nullable=False)  # click, captured, paid_event
    referred_user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=True, index=True)

    # Click context
    anon_id = Column(String(120), nullable=True)
    ip_hash = Column(String(128), nullable=True)
    user_agent = Column(String(400), nullable=True)
    referrer_url = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<ReferralTouchEvent(code={self.referral_code}, type={self.event_type})>"


class ReferralMilestone(Base):
    """Bonus unlocked at a number of active referrals."""
    __tablename__ = "referral_milestones"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    active_referrals_threshold = Column(Integer, nullable=False)
    bonus_credits = Column(Integer, nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ReferralMilestone(name={self.name}, threshold={self.active_referrals_threshold})>"


class ReferralMilestoneClaim(Base):
    """A user's claim of a milestone bonus, at most one per milestone."""
    __tablename__ = "referral_milestone_claims"
    __table_args__ = (
        UniqueConstraint("milestone_id", "user_id", name="uq_referral_milestone_claims"),
    )

    id = Column(Integer, primary_key=True)
    milestone_id = Column(Integer, ForeignKey("referral_milestones.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)

    claimed_at = Column(DateTime, default=utcnow, nullable=False)
