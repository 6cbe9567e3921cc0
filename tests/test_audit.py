from __future__ import annotations

from sqlalchemy.exc import OperationalError

from app.core.extensions import db
from app.core.models import Applicant, AuditEntity, AuditRecord, UserRole
from app.core.auth import Actor
from app.lifecycle import audit
from app.lifecycle.audit import (
    SYSTEM_RESPONSIBLE_ID,
    SYSTEM_RESPONSIBLE_NAME,
    build_records,
    diff_fields,
    log_change,
    records_for,
)


def test_one_record_per_changed_field(app, actor_for):
    coordinator = actor_for("coordinador@clinica.local")

    result = log_change(
        AuditEntity.APPLICANT,
        "V-30000001",
        {"phone": ("0414-0000001", "0424-1111111"), "email": (None, "carmen@example.com"), "last_name": ("Rondón", "Rondón")},
        coordinator,
    )

    assert result.ok
    assert result.written == 2
    rows = records_for(AuditEntity.APPLICANT, "V-30000001")
    assert {row.field for row in rows} == {"phone", "email"}
    email = next(row for row in rows if row.field == "email")
    assert email.old_value is None
    assert email.new_value == "carmen@example.com"
    assert email.responsible_id == str(coordinator.person_id)
    assert email.responsible_name == coordinator.name


def test_none_and_empty_string_are_different(app):
    records = build_records(AuditEntity.USER, "V-1", {"phone": (None, "")}, None)

    assert len(records) == 1
    assert records[0].old_value is None
    assert records[0].new_value == ""


def test_equal_values_of_different_numeric_types_are_not_changes(app):
    records = build_records(
        AuditEntity.ACTION,
        7,
        {"hours": (1, 1.0), "created_by_user_id": (2, 2), "notes": (None, "")},
        None,
    )

    assert [record.field for record in records] == ["notes"]


def test_missing_responsible_is_recorded_as_system(app):
    log_change(AuditEntity.CASE, 1, {"status": ("En Proceso", "Pausado")}, None, case_id=1)

    row = AuditRecord.query.filter_by(entity_type=AuditEntity.CASE, field="status").one()
    assert row.responsible_id == SYSTEM_RESPONSIBLE_ID
    assert row.responsible_name == SYSTEM_RESPONSIBLE_NAME
    assert row.case_id == 1
    assert row.entity_id == "1"


def test_no_changes_writes_nothing(app):
    result = log_change(AuditEntity.USER, "V-10000001", {}, None)
    assert result.ok and result.written == 0
    assert AuditRecord.query.count() == 0


def test_enum_values_are_stored_as_text(app):
    actor = Actor(person_id=1, role=UserRole.ADMINISTRATOR, name="Administrador Clínica")
    log_change(AuditEntity.USER, "V-20000001", {"role": (UserRole.STUDENT, UserRole.PROFESSOR)}, actor)

    row = AuditRecord.query.filter_by(field="role").one()
    assert (row.old_value, row.new_value) == ("STUDENT", "PROFESSOR")


def test_diff_fields_only_reports_changes():
    old = {"first_name": "Luis", "phone": None, "email": "a@b.c"}
    new = {"first_name": "Luis", "phone": "", "email": "x@b.c"}

    assert diff_fields(old, new) == {"phone": (None, ""), "email": ("a@b.c", "x@b.c")}
    assert diff_fields(old, new, tracked=["email"]) == {"email": ("a@b.c", "x@b.c")}


def test_storage_failure_is_reported_not_raised(app, monkeypatch):
    def broken_commit():
        raise OperationalError("INSERT INTO audit_record", {}, Exception("disk I/O error"))

    monkeypatch.setattr(audit.db.session, "commit", broken_commit)
    result = log_change(AuditEntity.CASE, 1, {"status": ("En Proceso", "Archivado")}, None, case_id=1)
    monkeypatch.undo()

    assert not result.ok
    assert "disk I/O error" in result.error
    assert AuditRecord.query.count() == 0
    # The session stays usable for the next request.
    assert db.session.get(Applicant, 1).first_name == "Carmen"
