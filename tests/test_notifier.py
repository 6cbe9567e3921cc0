from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.extensions import db
from app.core.models import NotificationRecipient, StalledCaseFlag, User, utcnow
from app.lifecycle.errors import ValidationError
from app.lifecycle.notifier import NotificationSink, acknowledge_flag, open_flags, scan_stalled_cases
from app.lifecycle.status_history import record_transition, status_by_name


class RecordingSink(NotificationSink):
    def __init__(self):
        self.sent: list[tuple[int, str, int | None]] = []

    def notify(self, person_id, message, related_case_id=None):
        self.sent.append((person_id, message, related_case_id))


def _user_id(email: str) -> int:
    return User.query.filter_by(email=email).one().id


def test_recent_cases_are_not_flagged(app):
    assert scan_stalled_cases(180, now=utcnow() + timedelta(days=30)) == []
    assert StalledCaseFlag.query.count() == 0


def test_stalled_cases_flag_once_per_bucket(app):
    later = utcnow() + timedelta(days=200)

    assert scan_stalled_cases(180, now=later) == [1, 2]
    assert scan_stalled_cases(180, now=later + timedelta(days=1)) == []
    assert StalledCaseFlag.query.count() == 2
    assert {flag.threshold_bucket for flag in StalledCaseFlag.query.all()} == {1}


def test_next_bucket_notifies_again(app):
    scan_stalled_cases(180, now=utcnow() + timedelta(days=200))

    assert scan_stalled_cases(180, now=utcnow() + timedelta(days=370)) == [1, 2]
    assert {flag.threshold_bucket for flag in StalledCaseFlag.query.all()} == {1, 2}


def test_other_threshold_is_not_suppressed_by_matching_bucket(app):
    later = utcnow() + timedelta(days=200)

    assert scan_stalled_cases(180, now=later) == [1, 2]
    # 200 // 150 is also bucket 1, but it is a different alert.
    assert scan_stalled_cases(150, now=later) == [1, 2]
    assert scan_stalled_cases(150, now=later + timedelta(days=1)) == []
    keys = {(flag.case_id, flag.threshold_days, flag.threshold_bucket) for flag in StalledCaseFlag.query.all()}
    assert keys == {(1, 180, 1), (2, 180, 1), (1, 150, 1), (2, 150, 1)}


def test_archived_cases_are_skipped(app):
    record_transition(1, status_by_name("Archivado").id, None, "Sistema", "Cierre")
    db.session.commit()

    assert scan_stalled_cases(180, now=utcnow() + timedelta(days=200)) == [2]


def test_recipients_are_coordinators_and_active_professors(app):
    sink = RecordingSink()

    scan_stalled_cases(180, now=utcnow() + timedelta(days=200), sink=sink)

    coordinator = _user_id("coordinador@clinica.local")
    professor = _user_id("profesor@clinica.local")
    by_case: dict[int, set[int]] = {}
    for person_id, message, case_id in sink.sent:
        by_case.setdefault(case_id, set()).add(person_id)
        assert "sin cambios" in message
    assert by_case == {1: {coordinator, professor}, 2: {coordinator}}


def test_database_sink_stores_inbox_entries(app):
    scan_stalled_cases(180, now=utcnow() + timedelta(days=200))

    rows = NotificationRecipient.query.filter_by(user_id=_user_id("coordinador@clinica.local")).all()
    assert sorted(row.notification.related_case_id for row in rows) == [1, 2]
    assert all(row.reviewed_at is None for row in rows)


def test_acknowledged_flag_still_suppresses_same_bucket(app):
    later = utcnow() + timedelta(days=200)
    scan_stalled_cases(180, now=later)
    flag = open_flags(case_id=1)[0]

    acknowledge_flag(flag.id)

    assert open_flags(case_id=1) == []
    assert scan_stalled_cases(180, now=later + timedelta(days=2)) == []


def test_new_status_restarts_the_clock(app):
    scan_stalled_cases(180, now=utcnow() + timedelta(days=200))
    record_transition(1, status_by_name("Pausado").id, None, "Sistema", "Reactivación")
    db.session.commit()

    assert scan_stalled_cases(180, now=utcnow() + timedelta(days=100)) == []


@pytest.mark.parametrize("threshold", [0, -5])
def test_threshold_must_be_positive(app, threshold):
    with pytest.raises(ValidationError):
        scan_stalled_cases(threshold)
