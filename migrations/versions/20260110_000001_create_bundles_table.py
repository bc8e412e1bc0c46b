"""Create bundles table.

Revision ID: 20260110_000001
Revises:
Create Date: 2026-01-10 00:00:01.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20260110_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if not inspector.has_table("bundles"):
        json_type = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
        op.create_table(
            "bundles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("shop_id", sa.String(), nullable=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("collection_id", sa.String(), nullable=False),
            sa.Column("collection_title", sa.Text(), nullable=False),
            sa.Column("rules", json_type, nullable=False),
            sa.Column("discount_codes", json_type, nullable=False),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        )
        op.create_index("ix_bundles_shop_id", "bundles", ["shop_id"])
        op.create_index("ix_bundles_created_at", "bundles", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_bundles_created_at", table_name="bundles")
    op.drop_index("ix_bundles_shop_id", table_name="bundles")
    op.drop_table("bundles")
