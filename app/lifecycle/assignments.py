from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.core.extensions import db
from app.core.models import Assignment, AssignmentState, PersonKind, Term, utcnow
from app.lifecycle.errors import ConflictError, NotFoundError, ValidationError
from app.lifecycle.status_history import case_by_id

logger = logging.getLogger(__name__)


def term_by_code(code: str) -> Term:
    term = Term.query.filter_by(code=(code or "").strip()).first()
    if not term:
        raise NotFoundError(f"Semestre no encontrado: {code}")
    return term


def parse_person_kind(value: str | PersonKind) -> PersonKind:
    if isinstance(value, PersonKind):
        return value
    raw = (value or "").strip().upper()
    try:
        return PersonKind[raw]
    except KeyError as exc:
        raise ValidationError("Tipo de asignación inválido") from exc


def assignment_by_id(assignment_id: int) -> Assignment:
    assignment = db.session.get(Assignment, assignment_id)
    if not assignment:
        raise NotFoundError("Asignación no encontrada")
    return assignment


def _active_rows(case_id: int, term_id: int, kind: PersonKind | None = None, lock: bool = False):
    query = Assignment.query.filter_by(case_id=case_id, term_id=term_id, state=AssignmentState.ACTIVE)
    if kind is not None:
        query = query.filter_by(person_kind=kind)
    if lock:
        query = query.with_for_update()
    return query.order_by(Assignment.id.desc()).all()


def _mark_inactive(assignment: Assignment) -> None:
    assignment.state = AssignmentState.INACTIVE
    assignment.deactivated_at = utcnow()
    db.session.add(assignment)


def assign(
    case_id: int,
    term: str,
    person_id: int,
    kind: str | PersonKind,
    replace: bool = False,
) -> Assignment:
    """Create an ACTIVE assignment; the caller owns the transaction.

    When the (case, term, kind) slot is already held by someone else this
    raises ``ConflictError`` unless ``replace`` is set, in which case the
    current holders are locked and deactivated before the insert.

    Idempotency rule: when ``person_id`` is already the only active holder of
    the slot, the existing row is returned unchanged and nothing is written,
    with or without ``replace``. This is the one case where an active row
    does not raise ``ConflictError``.
    """
    kind = parse_person_kind(kind)
    case_by_id(case_id)
    term_row = term_by_code(term)

    current = _active_rows(case_id, term_row.id, kind, lock=True)
    same_person = next((row for row in current if row.person_id == person_id), None)
    if same_person is not None and len(current) == 1:
        return same_person
    if current:
        if not replace:
            raise ConflictError(
                f"El caso #{case_id} ya tiene una asignación activa de {kind.value} en {term_row.code}"
            )
        for row in current:
            _mark_inactive(row)
        # Deactivations must reach the database before the insert hits the partial index.
        db.session.flush()

    assignment = Assignment(
        case_id=case_id,
        term_id=term_row.id,
        person_id=person_id,
        person_kind=kind,
        state=AssignmentState.ACTIVE,
    )
    db.session.add(assignment)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # A concurrent writer took the slot between our read and insert.
        raise ConflictError(
            f"El caso #{case_id} ya tiene una asignación activa de {kind.value} en {term_row.code}"
        ) from exc
    logger.info(
        "Assigned %s %s to case %s for term %s (assignment %s)",
        kind.value,
        person_id,
        case_id,
        term_row.code,
        assignment.id,
    )
    return assignment


def deactivate(assignment_id: int) -> Assignment:
    assignment = assignment_by_id(assignment_id)
    if assignment.state == AssignmentState.INACTIVE:
        return assignment
    _mark_inactive(assignment)
    db.session.flush()
    logger.info("Deactivated assignment %s on case %s", assignment.id, assignment.case_id)
    return assignment


def active_assignees(case_id: int, term: str | None = None, kind: str | PersonKind | None = None) -> set[int]:
    query = db.session.query(Assignment.person_id).filter(
        Assignment.case_id == case_id,
        Assignment.state == AssignmentState.ACTIVE,
    )
    if term:
        query = query.filter(Assignment.term_id == term_by_code(term).id)
    if kind:
        query = query.filter(Assignment.person_kind == parse_person_kind(kind))
    return {person_id for (person_id,) in query.all()}


def participates(case_id: int, person_id: int) -> bool:
    return (
        db.session.query(Assignment.id)
        .filter(
            Assignment.case_id == case_id,
            Assignment.person_id == person_id,
            Assignment.state == AssignmentState.ACTIVE,
        )
        .first()
        is not None
    )


def list_assignments(case_id: int, include_inactive: bool = False) -> list[Assignment]:
    query = Assignment.query.filter_by(case_id=case_id)
    if not include_inactive:
        query = query.filter_by(state=AssignmentState.ACTIVE)
    return query.order_by(Assignment.id.asc()).all()


def repair_duplicates(case_id: int, term: str) -> int:
    """Collapse duplicate ACTIVE rows of a (case, term), one survivor per kind.

    The highest id (most recent) row survives. Rows are locked for the
    duration of the caller's transaction, so a second run finds nothing.
    """
    term_row = term_by_code(term)
    rows = _active_rows(case_id, term_row.id, lock=True)
    by_kind: dict[PersonKind, list[Assignment]] = defaultdict(list)
    for row in rows:
        by_kind[row.person_kind].append(row)

    deactivated = 0
    for kind, kind_rows in by_kind.items():
        keep, *extra = kind_rows
        for row in extra:
            _mark_inactive(row)
            deactivated += 1
        if extra:
            logger.warning(
                "Case %s term %s: kept %s assignment %s, deactivated %s",
                case_id,
                term_row.code,
                kind.value,
                keep.id,
                [row.id for row in extra],
            )
    if deactivated:
        db.session.flush()
    return deactivated


def duplicate_groups() -> list[tuple[int, str]]:
    """(case_id, term code) pairs holding more than one ACTIVE row of a kind."""
    rows = (
        db.session.query(Assignment.case_id, Term.code)
        .join(Term, Term.id == Assignment.term_id)
        .filter(Assignment.state == AssignmentState.ACTIVE)
        .group_by(Assignment.case_id, Term.code, Assignment.person_kind)
        .having(func.count(Assignment.id) > 1)
        .all()
    )
    return sorted({(case_id, code) for case_id, code in rows})


def repair_all_duplicates() -> int:
    total = 0
    for case_id, term_code in duplicate_groups():
        total += repair_duplicates(case_id, term_code)
    return total
