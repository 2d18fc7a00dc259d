"""Initial referral engine schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates tables for:
- user_accounts: Marketplace profiles (read by the referral engine)
- app_settings: Admin key/value settings, including referral policy
- referral_codes: One code per user
- referrals: Attribution edges, one per referred user
- referral_rewards: Issued rewards, unique per event and level
- credit_ledger: Append-only credit movements
- referral_milestones / referral_milestone_claims: Milestone bonuses
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create referral engine tables."""

    op.create_table(
        "user_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="agent"),
        sa.Column("leaderboard_opt_out", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_accounts_email", "user_accounts", ["email"], unique=True)
    op.create_index("ix_user_accounts_role", "user_accounts", ["role"], unique=False)

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "referral_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index("ix_referral_codes_code", "referral_codes", ["code"], unique=True)

    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referred_user_id", sa.Integer(), nullable=False),
        sa.Column("referrer_user_id", sa.Integer(), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["referred_user_id"], ["user_accounts.id"]),
        sa.ForeignKeyConstraint(["referrer_user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("referred_user_id"),
        sa.CheckConstraint("depth >= 1", name="ck_referrals_depth_positive"),
    )
    op.create_index("ix_referrals_referrer_user_id", "referrals", ["referrer_user_id"], unique=False)

    op.create_table(
        "referral_rewards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referrer_user_id", sa.Integer(), nullable=False),
        sa.Column("referred_user_id", sa.Integer(), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("event_reference", sa.String(255), nullable=False),
        sa.Column("credit_type", sa.String(30), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("issued_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["referrer_user_id"], ["user_accounts.id"]),
        sa.ForeignKeyConstraint(["referred_user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "referrer_user_id",
            "referred_user_id",
            "level",
            "event_type",
            "event_reference",
            name="uq_referral_rewards_idempotency",
        ),
    )
    op.create_index("ix_referral_rewards_referrer_user_id", "referral_rewards", ["referrer_user_id"], unique=False)
    op.create_index("ix_referral_rewards_referred_user_id", "referral_rewards", ["referred_user_id"], unique=False)
    op.create_index("ix_referral_rewards_issued_at", "referral_rewards", ["issued_at"], unique=False)

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("credit_type", sa.String(30), nullable=False),
        sa.Column("delta", sa.Float(), nullable=False),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("source_ref", sa.String(255), nullable=False),
        sa.Column("reward_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("issued_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.ForeignKeyConstraint(["reward_id"], ["referral_rewards.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reward_id"),
        sa.UniqueConstraint("user_id", "credit_type", "source", "source_ref", name="uq_credit_ledger_source"),
    )
    op.create_index("ix_credit_ledger_user_id", "credit_ledger", ["user_id"], unique=False)
    op.create_index("ix_credit_ledger_user_type", "credit_ledger", ["user_id", "credit_type"], unique=False)
    op.create_index("ix_credit_ledger_issued_at", "credit_ledger", ["issued_at"], unique=False)

    op.create_table(
        "referral_milestones",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("active_referrals_threshold", sa.Integer(), nullable=False),
        sa.Column("bonus_credits", sa.Integer(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "referral_milestone_claims",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("milestone_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("claimed_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["milestone_id"], ["referral_milestones.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("milestone_id", "user_id", name="uq_referral_milestone_claims"),
    )
    op.create_index("ix_referral_milestone_claims_user_id", "referral_milestone_claims", ["user_id"], unique=False)


def downgrade() -> None:
    """Drop referral engine tables."""
    op.drop_table("referral_milestone_claims")
    op.drop_table("referral_milestones")
    op.drop_table("credit_ledger")
    op.drop_table("referral_rewards")
    op.drop_table("referrals")
    op.drop_table("referral_codes")
    op.drop_table("app_settings")
    op.drop_table("user_accounts")
