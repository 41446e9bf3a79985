"""Create channel account, taxonomy and marketplace link tables.

Revision ID: 002
Revises: 001
Create Date: 2026-10-05

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create channel sync tables."""
    op.create_table(
        "channel_accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("channel_type", sa.String(50), nullable=False, index=True),
        sa.Column("account_name", sa.String(200), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("settings", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
        sa.UniqueConstraint("channel_type", "account_name", name="uq_channel_accounts_type_name"),
    )

    # Cached channel schema: categories, attributes and list values
    op.create_table(
        "taxonomy_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "channel_account_id",
            sa.String(36),
            sa.ForeignKey("channel_accounts.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("taxonomy_type", sa.String(20), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("key", sa.String(255), nullable=True, index=True),
        sa.Column("data_type", sa.String(50), nullable=True),
        sa.Column("is_required", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("validation_rules", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("parent_external_id", sa.String(255), nullable=True),
        sa.Column(
            "parent_id",
            sa.String(36),
            sa.ForeignKey("taxonomy_entries.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("category_external_id", sa.String(255), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true(), index=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "channel_account_id",
            "taxonomy_type",
            "external_id",
            name="uq_taxonomy_entries_account_type_external",
        ),
    )
    op.create_index(
        "ix_taxonomy_entries_account_type",
        "taxonomy_entries",
        ["channel_account_id", "taxonomy_type"],
    )

    op.create_table(
        "marketplace_links",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "channel_account_id",
            sa.String(36),
            sa.ForeignKey("channel_accounts.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("level", sa.String(20), nullable=False, server_default="product"),
        sa.Column("internal_id", sa.String(36), nullable=False, index=True),
        sa.Column("external_product_id", sa.String(255), nullable=True),
        sa.Column("external_variant_id", sa.String(255), nullable=True),
        sa.Column("internal_sku", sa.String(100), nullable=True),
        sa.Column("external_sku", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column(
            "parent_link_id",
            sa.String(36),
            sa.ForeignKey("marketplace_links.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column("external_metadata", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linked_by", sa.String(100), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )
    op.create_index(
        "uq_links_account_external_product",
        "marketplace_links",
        ["channel_account_id", "external_product_id"],
        unique=True,
        postgresql_where=sa.text("level = 'product'"),
    )
    op.create_index(
        "uq_links_account_external_variant",
        "marketplace_links",
        ["channel_account_id", "external_variant_id"],
        unique=True,
        postgresql_where=sa.text("level = 'variant' AND external_variant_id IS NOT NULL"),
    )
    op.create_index(
        "ix_links_account_level_internal",
        "marketplace_links",
        ["channel_account_id", "level", "internal_id"],
    )

    # Legacy flat links, read once by `channelsync migrate-links`
    op.create_table(
        "sku_links",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("product_id", sa.String(36), nullable=False, index=True),
        sa.Column("channel_account_id", sa.String(36), nullable=False, index=True),
        sa.Column("internal_sku", sa.String(100), nullable=True),
        sa.Column("external_sku", sa.String(255), nullable=True),
        sa.Column("external_product_id", sa.String(255), nullable=True),
        sa.Column("link_status", sa.String(20), nullable=True),
        sa.Column("marketplace_data", postgresql.JSONB, nullable=True),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linked_by", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    """Drop channel sync tables."""
    op.drop_table("sku_links")
    op.drop_index("ix_links_account_level_internal", table_name="marketplace_links")
    op.drop_index("uq_links_account_external_variant", table_name="marketplace_links")
    op.drop_index("uq_links_account_external_product", table_name="marketplace_links")
    op.drop_table("marketplace_links")
    op.drop_index("ix_taxonomy_entries_account_type", table_name="taxonomy_entries")
    op.drop_table("taxonomy_entries")
    op.drop_table("channel_accounts")
