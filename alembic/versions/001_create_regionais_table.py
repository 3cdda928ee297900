"""Create regionais table

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates the `regionais` table, the versioned local mirror of the
       upstream regional list.
How:   Integer surrogate key, non-unique external_id, and a partial unique
       index allowing one active row per external_id alongside any number
       of inactive historical rows.

Rollback: downgrade() drops the table (destructive, history is lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the regionais table, its lookup indexes and the active-row constraint."""
    op.create_table(
        "regionais",
        sa.Column(
            "id",
            sa.Integer(),
            autoincrement=True,
            nullable=False,
            comment="Surrogate key, unique per row",
        ),
        sa.Column(
            "external_id",
            sa.BigInteger(),
            nullable=False,
            comment="Identifier from the upstream system (not unique across history)",
        ),
        sa.Column(
            "name",
            sa.String(200),
            nullable=False,
            comment="Regional label as published by the upstream",
        ),
        sa.Column(
            "active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
            comment="Whether this row is the effective version for its external_id",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="When this version was inserted (UTC)",
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="Last mutation of this row (UTC)",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index(
        "idx_regionais_external_id_active",
        "regionais",
        ["external_id", "active"],
    )
    op.create_index("idx_regionais_active", "regionais", ["active"])

    # At most one ACTIVE row per external_id; inactive history is unconstrained.
    op.create_index(
        "uq_regionais_external_id_active",
        "regionais",
        ["external_id"],
        unique=True,
        postgresql_where=sa.text("active"),
    )


def downgrade() -> None:
    op.drop_index("uq_regionais_external_id_active", table_name="regionais")
    op.drop_index("idx_regionais_active", table_name="regionais")
    op.drop_index("idx_regionais_external_id_active", table_name="regionais")
    op.drop_table("regionais")
