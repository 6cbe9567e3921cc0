"""collapse duplicate active assignments and restore one-active partial unique index

Revision ID: 6b7c8d9e0f1a
Revises: 0a1b2c3d4e5f
Create Date: 2026-09-21 18:05:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "6b7c8d9e0f1a"
down_revision = "0a1b2c3d4e5f"
branch_labels = None
depends_on = None


def upgrade():
    # Keep the most recent ACTIVE row of each (case, term, kind); the index cannot be built otherwise.
    op.execute(
        sa.text(
            """
            UPDATE assignment
            SET state = 'INACTIVE', deactivated_at = CURRENT_TIMESTAMP
            WHERE state = 'ACTIVE'
              AND id NOT IN (
                SELECT keep_id FROM (
                    SELECT MAX(id) AS keep_id
                    FROM assignment
                    WHERE state = 'ACTIVE'
                    GROUP BY case_id, term_id, person_kind
                ) AS survivors
              )
            """
        )
    )

    op.create_index(
        "ix_assignment_one_active",
        "assignment",
        ["case_id", "term_id", "person_kind"],
        unique=True,
        sqlite_where=sa.text("state = 'ACTIVE'"),
        postgresql_where=sa.text("state = 'ACTIVE'"),
    )


def downgrade():
    op.drop_index("ix_assignment_one_active", table_name="assignment")
