from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.extensions import db
from app.core.models import StatusEntry, utcnow
from app.lifecycle.errors import NotFoundError, ValidationError
from app.lifecycle.status_history import (
    current_status,
    history,
    list_statuses,
    record_transition,
    status_by_name,
)


def test_catalog_lists_seeded_statuses(app):
    names = [status.name for status in list_statuses()]
    assert names == ["En Proceso", "Asesoría", "Entregado", "Archivado", "Pausado"]
    assert status_by_name("archivado").is_active is False


def test_record_transition_appends_and_becomes_current(app):
    advice = status_by_name("Asesoría")
    before = len(history(1))

    entry = record_transition(1, advice.id, None, "Coordinación Clínica", "Cita de asesoría")
    db.session.commit()

    assert current_status(1).id == entry.id
    assert current_status(1).status.name == "Asesoría"
    assert len(history(1)) == before + 1


def test_same_call_twice_appends_two_entries(app):
    paused = status_by_name("Pausado")
    first = record_transition(2, paused.id, None, "Sistema", "Documentos pendientes")
    second = record_transition(2, paused.id, None, "Sistema", "Documentos pendientes")
    db.session.commit()

    assert first.id != second.id
    rows = history(2)
    assert [row.id for row in rows[:2]] == [second.id, first.id]


def test_prior_entries_are_never_modified(app):
    original = history(1)[-1]
    snapshot = (original.status_id, original.reason, original.recorded_at)

    record_transition(1, status_by_name("Entregado").id, None, "Sistema", "Entrega de documentos")
    db.session.commit()

    reloaded = db.session.get(StatusEntry, original.id)
    assert (reloaded.status_id, reloaded.reason, reloaded.recorded_at) == snapshot


def test_equal_timestamps_fall_back_to_highest_id(app):
    stamp = utcnow() + timedelta(minutes=5)
    advice = status_by_name("Asesoría")
    paused = status_by_name("Pausado")
    db.session.add(StatusEntry(case_id=1, status_id=advice.id, actor_name="Sistema", reason="a", recorded_at=stamp))
    db.session.flush()
    later = StatusEntry(case_id=1, status_id=paused.id, actor_name="Sistema", reason="b", recorded_at=stamp)
    db.session.add(later)
    db.session.commit()

    assert current_status(1).id == later.id
    assert current_status(1).status.name == "Pausado"


def test_history_is_most_recent_first(app):
    record_transition(1, status_by_name("Asesoría").id, None, "Sistema", "Paso 1")
    record_transition(1, status_by_name("Entregado").id, None, "Sistema", "Paso 2")
    db.session.commit()

    rows = history(1)
    assert [row.status.name for row in rows] == ["Entregado", "Asesoría", "En Proceso"]
    stamps = [row.recorded_at for row in rows]
    assert stamps == sorted(stamps, reverse=True)


def test_blank_reason_is_rejected(app):
    with pytest.raises(ValidationError):
        record_transition(1, status_by_name("Asesoría").id, None, "Sistema", "   ")


def test_unknown_status_is_rejected(app):
    with pytest.raises(ValidationError):
        record_transition(1, 9999, None, "Sistema", "Motivo")


def test_unknown_case_is_not_found(app):
    with pytest.raises(NotFoundError):
        record_transition(9999, status_by_name("Asesoría").id, None, "Sistema", "Motivo")


def test_case_without_entries_has_no_current_status(app):
    from app.core.models import Case

    case = Case(applicant_id=1, summary="Sin historial")
    db.session.add(case)
    db.session.commit()

    assert current_status(case.id) is None
    assert history(case.id) == []
