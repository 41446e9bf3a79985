"""Create catalog and attribute tables.

Revision ID: 001
Revises:
Create Date: 2026-09-28

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create products, variants, attribute definitions and assignments."""
    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("category_path", sa.String(500), nullable=True),
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

    op.create_table(
        "product_variants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "product_id",
            sa.String(36),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "attribute_definitions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("key", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("data_type", sa.String(20), nullable=False, server_default="string"),
        sa.Column("validation_rules", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("enum_values", postgresql.JSONB, nullable=True),
        sa.Column("default_value", sa.Text, nullable=True),
        # Inheritance
        sa.Column("is_inheritable", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("inheritance_strategy", sa.String(20), nullable=False, server_default="always"),
        sa.Column("is_required_for_products", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_required_for_variants", sa.Boolean, nullable=False, server_default=sa.false()),
        # Channel mapping, e.g. {"shopify": {"attribute": "material"}}
        sa.Column("marketplace_mappings", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("deprecated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # No foreign key on attribute_definition_id: orphaned values are
    # detected and repaired by the validator.
    op.create_table(
        "attribute_assignments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_kind", sa.String(20), nullable=False),
        sa.Column("owner_id", sa.String(36), nullable=False),
        sa.Column("attribute_definition_id", sa.String(36), nullable=False, index=True),
        sa.Column("value", sa.Text, nullable=True),
        # Validation
        sa.Column("validation_status", sa.String(20), nullable=False, server_default="unvalidated"),
        sa.Column("validation_errors", postgresql.JSONB, nullable=True),
        sa.Column("last_validated_at", sa.DateTime(timezone=True), nullable=True),
        # Inheritance
        sa.Column("is_inherited", sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column("is_override", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("inherited_from_id", sa.String(36), nullable=True, index=True),
        sa.Column("inherited_at", sa.DateTime(timezone=True), nullable=True),
        # Audit
        sa.Column("source", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_by", sa.String(100), nullable=True),
        sa.Column("previous_value", sa.Text, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
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
        "ix_attribute_assignments_owner",
        "attribute_assignments",
        ["owner_kind", "owner_id"],
    )


def downgrade() -> None:
    """Drop catalog and attribute tables."""
    op.drop_index("ix_attribute_assignments_owner", table_name="attribute_assignments")
    op.drop_table("attribute_assignments")
    op.drop_table("attribute_definitions")
    op.drop_table("product_variants")
    op.drop_table("products")
