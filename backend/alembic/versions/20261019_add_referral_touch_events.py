"""Add referral touch events

Revision ID: 002_touch_events
Revises: 001_initial
Create Date: 2026-10-19

Creates tables for:
- referral_touch_events: Share-link clicks, captured signups and paid events per code
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "002_touch_events"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create share tracking table."""

    op.create_table(
        "referral_touch_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("referred_user_id", sa.Integer(), nullable=True),
        sa.Column("anon_id", sa.String(120), nullable=True),
        sa.Column("ip_hash", sa.String(128), nullable=True),
        sa.Column("user_agent", sa.String(400), nullable=True),
        sa.Column("referrer_url", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["referred_user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_referral_touch_events_code_type",
        "referral_touch_events",
        ["referral_code", "event_type"],
        unique=False,
    )
    op.create_index(
        "ix_referral_touch_events_referred_user_id", "referral_touch_events", ["referred_user_id"], unique=False
    )
    op.create_index("ix_referral_touch_events_created_at", "referral_touch_events", ["created_at"], unique=False)


def downgrade() -> None:
    """Drop share tracking table."""
    op.drop_index("ix_referral_touch_events_created_at", table_name="referral_touch_events")
    op.drop_index("ix_referral_touch_events_referred_user_id", table_name="referral_touch_events")
    op.drop_index("ix_referral_touch_events_code_type", table_name="referral_touch_events")
    op.drop_table("referral_touch_events")
