"""Shared database models: the declarative base, user profiles and app settings."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marketplace.timeutils import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class UserRole(str, Enum):
    """Marketplace account roles."""
    AGENT = "agent"
    LANDLORD = "landlord"
    TENANT = "tenant"
    ADMIN = "admin"


# Roles that take part in the referral leaderboard
LEADERBOARD_ROLES = (UserRole.AGENT.value, UserRole.LANDLORD.value)


class UserAccount(Base):
    """Marketplace user profile.

    Owned by the onboarding flow. The referral engine only reads it, apart from
    the leaderboard opt-out flag which the user controls.
    """

    __tablename__ = "user_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.AGENT.value, nullable=False, index=True)

    leaderboard_opt_out: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    @property
    def public_name(self) -> str | None:
        """Name shown to other users, preferring the chosen display name."""
        return self.display_name or self.full_name

    def __repr__(self) -> str:
        return f"<UserAccount(id={self.id}, email='{self.email}', role={self.role})>"


class AppSetting(Base):
    """Admin-configured key/value setting."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AppSetting(key='{self.key}')>"
