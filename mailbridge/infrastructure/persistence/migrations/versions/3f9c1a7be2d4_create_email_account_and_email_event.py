"""create_email_account_and_email_event

Revision ID: 3f9c1a7be2d4
Revises:
Create Date: 2026-10-18 09:12:44.512093

"""

from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9c1a7be2d4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "email_account",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("email_address", sa.String(length=320), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("access_token_encrypted", sa.Text(), nullable=True),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", sa.JSON(), nullable=True),
        sa.Column("token_last_refreshed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "token_refresh_count", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("gmail_history_id", sa.String(length=64), nullable=True),
        sa.Column("gmail_watch_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ms_subscription_id", sa.String(length=128), nullable=True),
        sa.Column(
            "ms_subscription_expires_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("last_push_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("health", sa.String(length=32), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id",
            "provider",
            "email_address",
            name="uq_email_account_tenant_provider_address",
        ),
    )
    op.create_index("ix_email_account_tenant_id", "email_account", ["tenant_id"])
    op.create_index("ix_email_account_provider", "email_account", ["provider"])
    op.create_index("ix_email_account_email_address", "email_account", ["email_address"])
    op.create_index("ix_email_account_status", "email_account", ["status"])
    op.create_index(
        "ix_email_account_ms_subscription_id", "email_account", ["ms_subscription_id"]
    )

    op.create_table(
        "email_event",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("provider_thread_id", sa.String(length=255), nullable=True),
        sa.Column("direction", sa.String(length=16), nullable=False),
        sa.Column("from_address", sa.String(length=320), nullable=True),
        sa.Column("to_addresses", sa.JSON(), nullable=True),
        sa.Column("cc_addresses", sa.JSON(), nullable=True),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("body_text", sa.Text(), nullable=True),
        sa.Column("body_html", sa.Text(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["account_id"], ["email_account.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "account_id",
            "provider_message_id",
            name="uq_email_event_account_provider_message",
        ),
    )
    op.create_index("ix_email_event_tenant_id", "email_event", ["tenant_id"])
    op.create_index("ix_email_event_account_id", "email_event", ["account_id"])
    op.create_index(
        "ix_email_event_status_claimed_at", "email_event", ["status", "claimed_at"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_email_event_status_claimed_at", table_name="email_event")
    op.drop_index("ix_email_event_account_id", table_name="email_event")
    op.drop_index("ix_email_event_tenant_id", table_name="email_event")
    op.drop_table("email_event")
    op.drop_index("ix_email_account_ms_subscription_id", table_name="email_account")
    op.drop_index("ix_email_account_status", table_name="email_account")
    op.drop_index("ix_email_account_email_address", table_name="email_account")
    op.drop_index("ix_email_account_provider", table_name="email_account")
    op.drop_index("ix_email_account_tenant_id", table_name="email_account")
    op.drop_table("email_account")
