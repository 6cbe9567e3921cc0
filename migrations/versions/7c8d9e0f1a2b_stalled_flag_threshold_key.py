"""stalled case flags keyed by threshold as well as bucket

Revision ID: 7c8d9e0f1a2b
Revises: 6b7c8d9e0f1a
Create Date: 2026-10-19 10:20:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "7c8d9e0f1a2b"
down_revision = "6b7c8d9e0f1a"
branch_labels = None
depends_on = None


def upgrade():
    # Existing flags were written by scans using the default threshold.
    with op.batch_alter_table("stalled_case_flag", schema=None) as batch_op:
        batch_op.add_column(sa.Column("threshold_days", sa.Integer(), nullable=False, server_default="180"))
        batch_op.drop_constraint("uq_stalled_case_flag_key", type_="unique")
        batch_op.create_unique_constraint(
            "uq_stalled_case_flag_key",
            ["case_id", "status_id", "threshold_days", "threshold_bucket"],
        )


def downgrade():
    # Keep one flag per old key before narrowing the constraint.
    op.execute(
        sa.text(
            """
            DELETE FROM stalled_case_flag
            WHERE id NOT IN (
                SELECT keep_id FROM (
                    SELECT MIN(id) AS keep_id
                    FROM stalled_case_flag
                    GROUP BY case_id, status_id, threshold_bucket
                ) AS survivors
            )
            """
        )
    )
    with op.batch_alter_table("stalled_case_flag", schema=None) as batch_op:
        batch_op.drop_constraint("uq_stalled_case_flag_key", type_="unique")
        batch_op.create_unique_constraint(
            "uq_stalled_case_flag_key",
            ["case_id", "status_id", "threshold_bucket"],
        )
        batch_op.drop_column("threshold_days")
