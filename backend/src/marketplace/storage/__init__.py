"""Storage layer: engine, sessions and shared tables."""

from marketplace.storage.db import Database, db
from marketplace.storage.models import AppSetting, Base, UserAccount, UserRole

__all__ = ["AppSetting", "Base", "Database", "UserAccount", "UserRole", "db"]
