"""add feed posts and internal messages

Revision ID: 0002_feed_posts_internal_messages
Revises: 0001_inline_media_assets
Create Date: 2026-10-12
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_feed_posts_internal_messages"
down_revision = "0001_inline_media_assets"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "feed_posts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("author_user_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("body_html", sa.Text(), nullable=False, server_default=""),
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
    )
    op.create_index("ix_feed_posts_tenant_id", "feed_posts", ["tenant_id"], unique=False)

    op.create_table(
        "internal_messages",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("sender_user_id", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False, server_default=""),
        sa.Column("body_html", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(), nullable=False, server_default="DRAFT"),
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
    )
    op.create_index("ix_internal_messages_tenant_id", "internal_messages", ["tenant_id"], unique=False)
    op.create_index("ix_internal_messages_sender_user_id", "internal_messages", ["sender_user_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_internal_messages_sender_user_id", table_name="internal_messages")
    op.drop_index("ix_internal_messages_tenant_id", table_name="internal_messages")
    op.drop_table("internal_messages")

    op.drop_index("ix_feed_posts_tenant_id", table_name="feed_posts")
    op.drop_table("feed_posts")
