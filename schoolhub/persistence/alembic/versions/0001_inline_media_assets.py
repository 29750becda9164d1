"""add inline media asset registry

Revision ID: 0001_inline_media_assets
Revises:
Create Date: 2026-10-12
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_inline_media_assets"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # One row per managed URL; status moves TEMP -> LINKED and rows are deleted when forgotten.
    op.create_table(
        "inline_media_assets",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("uploaded_by_user_id", sa.String(), nullable=False),
        sa.Column("scope", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=True),
        sa.Column("entity_id", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
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
        sa.UniqueConstraint("url", name="uq_inline_media_assets_url"),
    )
    op.create_index("ix_inline_media_assets_tenant_id", "inline_media_assets", ["tenant_id"], unique=False)
    # Serves "currently linked to entity X" lookups during sync and delete.
    op.create_index(
        "ix_inline_media_assets_entity",
        "inline_media_assets",
        ["entity_type", "entity_id", "status"],
        unique=False,
    )
    # Serves the expired TEMP sweep.
    op.create_index(
        "ix_inline_media_assets_status_expires",
        "inline_media_assets",
        ["status", "expires_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_inline_media_assets_status_expires", table_name="inline_media_assets")
    op.drop_index("ix_inline_media_assets_entity", table_name="inline_media_assets")
    op.drop_index("ix_inline_media_assets_tenant_id", table_name="inline_media_assets")
    op.drop_table("inline_media_assets")
