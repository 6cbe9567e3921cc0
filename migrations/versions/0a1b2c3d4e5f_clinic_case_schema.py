"""clinic case lifecycle schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-09-14 10:20:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0a1b2c3d4e5f"
down_revision = None
branch_labels = None
depends_on = None


user_role = sa.Enum("STUDENT", "PROFESSOR", "COORDINATOR", "ADMINISTRATOR", name="user_role")
legal_level = sa.Enum("MATERIA", "CATEGORIA", "SUBCATEGORIA", "AMBITO", name="legal_level")
person_kind = sa.Enum("STUDENT", "PROFESSOR", name="person_kind")
assignment_state = sa.Enum("ACTIVE", "INACTIVE", name="assignment_state")
audit_entity = sa.Enum(
    "USER",
    "APPLICANT",
    "CASE",
    "ACTION",
    "APPOINTMENT",
    "SUPPORT",
    "BENEFICIARY",
    "ASSIGNMENT",
    name="audit_entity",
)


def upgrade():
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("national_id", sa.String(length=20), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("phone", sa.String(length=30), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("national_id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "term",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=10), nullable=False),
        sa.Column("starts_on", sa.Date(), nullable=False),
        sa.Column("ends_on", sa.Date(), nullable=False),
        sa.CheckConstraint("ends_on >= starts_on", name="ck_term_dates"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_table(
        "case_status",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=40), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "legal_category",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("level", legal_level, nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.ForeignKeyConstraint(["parent_id"], ["legal_category.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("parent_id", "name", name="uq_legal_category_parent_name"),
    )
    op.create_table(
        "office",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "procedure_type",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "applicant",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("national_id", sa.String(length=20), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("phone", sa.String(length=30), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("national_id"),
    )
    op.create_table(
        "legal_case",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("applicant_id", sa.Integer(), nullable=False),
        sa.Column("legal_scope_id", sa.Integer(), nullable=True),
        sa.Column("office_id", sa.Integer(), nullable=True),
        sa.Column("procedure_type_id", sa.Integer(), nullable=True),
        sa.Column("summary", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("opened_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["applicant_id"], ["applicant.id"]),
        sa.ForeignKeyConstraint(["legal_scope_id"], ["legal_category.id"]),
        sa.ForeignKeyConstraint(["office_id"], ["office.id"]),
        sa.ForeignKeyConstraint(["procedure_type_id"], ["procedure_type.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_legal_case_applicant_id", "legal_case", ["applicant_id"], unique=False)

    op.create_table(
        "status_entry",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("status_id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_name", sa.String(length=120), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=False),
        sa.Column("recorded_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["case_id"], ["legal_case.id"]),
        sa.ForeignKeyConstraint(["status_id"], ["case_status.id"]),
        sa.ForeignKeyConstraint(["actor_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_status_entry_case_recorded",
        "status_entry",
        ["case_id", "recorded_at", "id"],
        unique=False,
    )

    op.create_table(
        "assignment",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("term_id", sa.Integer(), nullable=False),
        sa.Column("person_id", sa.Integer(), nullable=False),
        sa.Column("person_kind", person_kind, nullable=False),
        sa.Column("state", assignment_state, nullable=False, server_default="ACTIVE"),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["case_id"], ["legal_case.id"]),
        sa.ForeignKeyConstraint(["term_id"], ["term.id"]),
        sa.ForeignKeyConstraint(["person_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_assignment_case_person_state",
        "assignment",
        ["case_id", "person_id", "state"],
        unique=False,
    )

    op.create_table(
        "case_action",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("notes", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("performed_on", sa.Date(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["case_id"], ["legal_case.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_case_action_case_id", "case_action", ["case_id"], unique=False)

    op.create_table(
        "appointment",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.String(length=500), nullable=False, server_default=""),
        sa.ForeignKeyConstraint(["case_id"], ["legal_case.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_appointment_case_id", "appointment", ["case_id"], unique=False)

    op.create_table(
        "support_document",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("external_url", sa.String(length=500), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["case_id"], ["legal_case.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_support_document_case_id", "support_document", ["case_id"], unique=False)

    op.create_table(
        "beneficiary",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("national_id", sa.String(length=20), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("relationship_to_applicant", sa.String(length=60), nullable=True),
        sa.ForeignKeyConstraint(["case_id"], ["legal_case.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("case_id", "national_id", name="uq_beneficiary_case_person"),
    )
    op.create_index("ix_beneficiary_case_id", "beneficiary", ["case_id"], unique=False)

    op.create_table(
        "audit_record",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", audit_entity, nullable=False),
        sa.Column("entity_id", sa.String(length=40), nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=True),
        sa.Column("field", sa.String(length=60), nullable=False),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("responsible_id", sa.String(length=20), nullable=False),
        sa.Column("responsible_name", sa.String(length=120), nullable=False),
        sa.Column("recorded_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_record_entity", "audit_record", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_audit_record_case", "audit_record", ["case_id", "recorded_at"], unique=False)

    op.create_table(
        "notification",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("message", sa.String(length=500), nullable=False),
        sa.Column("related_case_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["related_case_id"], ["legal_case.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_related_case_id", "notification", ["related_case_id"], unique=False)

    op.create_table(
        "notification_recipient",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("notification_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["notification_id"], ["notification.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("notification_id", "user_id", name="uq_notification_recipient"),
    )
    op.create_index("ix_notification_recipient_user_id", "notification_recipient", ["user_id"], unique=False)

    op.create_table(
        "stalled_case_flag",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("status_id", sa.Integer(), nullable=False),
        sa.Column("threshold_bucket", sa.Integer(), nullable=False),
        sa.Column("status_entry_id", sa.Integer(), nullable=False),
        sa.Column("flagged_at", sa.DateTime(), nullable=False),
        sa.Column("acknowledged_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["case_id"], ["legal_case.id"]),
        sa.ForeignKeyConstraint(["status_id"], ["case_status.id"]),
        sa.ForeignKeyConstraint(["status_entry_id"], ["status_entry.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("case_id", "status_id", "threshold_bucket", name="uq_stalled_case_flag_key"),
    )


def downgrade():
    op.drop_table("stalled_case_flag")
    op.drop_index("ix_notification_recipient_user_id", table_name="notification_recipient")
    op.drop_table("notification_recipient")
    op.drop_index("ix_notification_related_case_id", table_name="notification")
    op.drop_table("notification")
    op.drop_index("ix_audit_record_case", table_name="audit_record")
    op.drop_index("ix_audit_record_entity", table_name="audit_record")
    op.drop_table("audit_record")
    op.drop_index("ix_beneficiary_case_id", table_name="beneficiary")
    op.drop_table("beneficiary")
    op.drop_index("ix_support_document_case_id", table_name="support_document")
    op.drop_table("support_document")
    op.drop_index("ix_appointment_case_id", table_name="appointment")
    op.drop_table("appointment")
    op.drop_index("ix_case_action_case_id", table_name="case_action")
    op.drop_table("case_action")
    op.drop_index("ix_assignment_case_person_state", table_name="assignment")
    op.drop_table("assignment")
    op.drop_index("ix_status_entry_case_recorded", table_name="status_entry")
    op.drop_table("status_entry")
    op.drop_index("ix_legal_case_applicant_id", table_name="legal_case")
    op.drop_table("legal_case")
    op.drop_table("applicant")
    op.drop_table("procedure_type")
    op.drop_table("office")
    op.drop_table("legal_category")
    op.drop_table("case_status")
    op.drop_table("term")
    op.drop_table("user_account")

    bind = op.get_bind()
    for enum in (audit_entity, assignment_state, person_kind, legal_level, user_role):
        enum.drop(bind, checkfirst=True)
