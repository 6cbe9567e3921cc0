from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError

from app.core.auth import Actor
from app.core.extensions import db
from app.core.models import AuditEntity, AuditRecord

logger = logging.getLogger(__name__)

SYSTEM_RESPONSIBLE_ID = "SISTEMA"
SYSTEM_RESPONSIBLE_NAME = "Sistema"


@dataclass
class AuditResult:
    """Outcome of a best-effort audit write.

    ``error`` is set when the write failed. Callers inspect it at most for
    logging; an audit failure never fails the mutation it describes.
    """

    written: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def diff_fields(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    tracked: Iterable[str] | None = None,
) -> dict[str, tuple[Any, Any]]:
    """Pair up the values of every tracked field that actually changed."""
    fields = list(tracked) if tracked is not None else list(new.keys())
    return {name: (old.get(name), new.get(name)) for name in fields if old.get(name) != new.get(name)}


def build_records(
    entity_type: AuditEntity,
    entity_id: Any,
    fields: Mapping[str, tuple[Any, Any]],
    responsible: Actor | None,
    case_id: int | None = None,
) -> list[AuditRecord]:
    records: list[AuditRecord] = []
    for name, (old_value, new_value) in fields.items():
        # Equality only: 1 and 1.0 are the same value, None and "" are not.
        if old_value == new_value:
            continue
        records.append(
            AuditRecord(
                entity_type=entity_type,
                entity_id=str(entity_id),
                case_id=case_id,
                field=name,
                old_value=_as_text(old_value),
                new_value=_as_text(new_value),
                responsible_id=str(responsible.person_id) if responsible else SYSTEM_RESPONSIBLE_ID,
                responsible_name=responsible.name if responsible else SYSTEM_RESPONSIBLE_NAME,
            )
        )
    return records


def log_change(
    entity_type: AuditEntity,
    entity_id: Any,
    fields: Mapping[str, tuple[Any, Any]],
    responsible: Actor | None,
    case_id: int | None = None,
) -> AuditResult:
    """Write one audit record per changed field, in its own transaction.

    Must be called after the primary mutation has committed: the session is
    committed here and rolled back on failure. Storage errors are logged and
    returned, never raised.
    """
    records = build_records(entity_type, entity_id, fields, responsible, case_id)
    if not records:
        return AuditResult()
    try:
        db.session.add_all(records)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning(
            "Audit write failed for %s %s (%d fields): %s",
            entity_type.value,
            entity_id,
            len(records),
            exc,
        )
        return AuditResult(error=str(exc))
    return AuditResult(written=len(records))


def records_for(entity_type: AuditEntity, entity_id: Any) -> list[AuditRecord]:
    return (
        AuditRecord.query.filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(AuditRecord.recorded_at.asc(), AuditRecord.id.asc())
        .all()
    )


def case_audit_trail(case_id: int) -> list[AuditRecord]:
    return (
        AuditRecord.query.filter_by(case_id=case_id)
        .order_by(AuditRecord.recorded_at.desc(), AuditRecord.id.desc())
        .all()
    )
