from __future__ import annotations

import logging

from sqlalchemy import func

from app.core.extensions import db
from app.core.models import Case, CaseStatus, StatusEntry, utcnow
from app.lifecycle.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def list_statuses() -> list[CaseStatus]:
    return CaseStatus.query.order_by(CaseStatus.id.asc()).all()


def status_by_id(status_id: int | None) -> CaseStatus:
    status = db.session.get(CaseStatus, status_id) if status_id is not None else None
    if not status:
        raise ValidationError("Estatus desconocido")
    return status


def status_by_name(name: str) -> CaseStatus:
    status = CaseStatus.query.filter(func.lower(CaseStatus.name) == (name or "").strip().lower()).first()
    if not status:
        raise ValidationError(f"Estatus desconocido: {name}")
    return status


def case_by_id(case_id: int) -> Case:
    case = db.session.get(Case, case_id)
    if not case:
        raise NotFoundError("Caso no encontrado")
    return case


def _ordered(case_id: int):
    # Ties on recorded_at fall back to insertion order.
    return StatusEntry.query.filter_by(case_id=case_id).order_by(
        StatusEntry.recorded_at.desc(),
        StatusEntry.id.desc(),
    )


def record_transition(
    case_id: int,
    new_status_id: int,
    actor_id: int | None,
    actor_name: str,
    reason: str,
) -> StatusEntry:
    """Append a status entry for the case.

    The caller owns the transaction. Prior entries are never touched and two
    identical calls append two entries.
    """
    clean_reason = (reason or "").strip()
    if not clean_reason:
        raise ValidationError("El motivo del cambio de estatus es obligatorio")
    status = status_by_id(new_status_id)
    case_by_id(case_id)

    entry = StatusEntry(
        case_id=case_id,
        status_id=status.id,
        actor_id=actor_id,
        actor_name=(actor_name or "").strip() or "Sistema",
        reason=clean_reason,
        recorded_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    logger.info("Case %s status -> %s (entry %s)", case_id, status.name, entry.id)
    return entry


def current_status(case_id: int) -> StatusEntry | None:
    return _ordered(case_id).first()


def history(case_id: int) -> list[StatusEntry]:
    return _ordered(case_id).all()
