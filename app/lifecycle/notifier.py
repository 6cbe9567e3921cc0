from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.extensions import db
from app.core.models import (
    Assignment,
    AssignmentState,
    Case,
    CaseStatus,
    Notification,
    NotificationRecipient,
    PersonKind,
    StalledCaseFlag,
    User,
    UserRole,
    as_utc,
    utcnow,
)
from app.lifecycle.errors import NotFoundError, StorageError, ValidationError
from app.lifecycle.status_history import current_status

logger = logging.getLogger(__name__)


class NotificationSink:
    """Delivery channel for user notifications."""

    def notify(self, person_id: int, message: str, related_case_id: int | None = None) -> None:
        raise NotImplementedError


class DatabaseNotificationSink(NotificationSink):
    """Stores notifications for the in-app inbox; the caller commits."""

    def notify(self, person_id: int, message: str, related_case_id: int | None = None) -> None:
        notification = Notification(message=message, related_case_id=related_case_id)
        notification.recipients.append(NotificationRecipient(user_id=person_id))
        db.session.add(notification)


def active_coordinator_ids() -> set[int]:
    rows = db.session.query(User.id).filter(User.role == UserRole.COORDINATOR, User.is_active.is_(True)).all()
    return {user_id for (user_id,) in rows}


def case_staff_ids(case_id: int, kinds: tuple[PersonKind, ...] = (PersonKind.STUDENT, PersonKind.PROFESSOR)) -> set[int]:
    rows = (
        db.session.query(Assignment.person_id)
        .filter(
            Assignment.case_id == case_id,
            Assignment.state == AssignmentState.ACTIVE,
            Assignment.person_kind.in_(kinds),
        )
        .all()
    )
    return {person_id for (person_id,) in rows}


def notify_many(sink: NotificationSink, person_ids: set[int], message: str, related_case_id: int | None) -> int:
    for person_id in sorted(person_ids):
        sink.notify(person_id, message, related_case_id)
    return len(person_ids)


@dataclass
class StalledCase:
    case_id: int
    status: CaseStatus
    status_entry_id: int
    age_days: int
    threshold_days: int
    bucket: int


def _stalled_candidates(threshold_days: int, now: datetime) -> list[StalledCase]:
    threshold = timedelta(days=threshold_days)
    found: list[StalledCase] = []
    for (case_id,) in db.session.query(Case.id).order_by(Case.id.asc()).all():
        entry = current_status(case_id)
        if entry is None or not entry.status.is_active:
            continue
        age = now - as_utc(entry.recorded_at)
        if age <= threshold:
            continue
        found.append(
            StalledCase(
                case_id=case_id,
                status=entry.status,
                status_entry_id=entry.id,
                age_days=age.days,
                threshold_days=threshold_days,
                bucket=age.days // threshold_days,
            )
        )
    return found


def _already_flagged(candidate: StalledCase) -> bool:
    return (
        StalledCaseFlag.query.filter_by(
            case_id=candidate.case_id,
            status_id=candidate.status.id,
            threshold_days=candidate.threshold_days,
            threshold_bucket=candidate.bucket,
        ).first()
        is not None
    )


def scan_stalled_cases(
    threshold_days: int,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> list[int]:
    """Flag active cases whose status has not changed in ``threshold_days``.

    Returns the ids of cases flagged by this run. A case already flagged for
    the same (status, threshold, bucket) is skipped, so repeated or
    concurrent scans notify once per bucket. Scans run with different
    thresholds keep separate flags. Each case commits on its own.
    """
    if threshold_days is None or int(threshold_days) < 1:
        raise ValidationError("El umbral de días debe ser un entero positivo")
    threshold_days = int(threshold_days)
    now = as_utc(now) if now else utcnow()
    sink = sink or DatabaseNotificationSink()

    flagged: list[int] = []
    for candidate in _stalled_candidates(threshold_days, now):
        if _already_flagged(candidate):
            continue
        recipients = active_coordinator_ids() | case_staff_ids(candidate.case_id, (PersonKind.PROFESSOR,))
        message = (
            f"Atención: el caso #{candidate.case_id} lleva {candidate.age_days} días "
            f"en estatus '{candidate.status.name}' sin cambios."
        )
        try:
            db.session.add(
                StalledCaseFlag(
                    case_id=candidate.case_id,
                    status_id=candidate.status.id,
                    threshold_days=candidate.threshold_days,
                    threshold_bucket=candidate.bucket,
                    status_entry_id=candidate.status_entry_id,
                    flagged_at=now,
                )
            )
            db.session.flush()
            notify_many(sink, recipients, message, candidate.case_id)
            db.session.commit()
        except IntegrityError:
            # Another scan flagged this case first.
            db.session.rollback()
            continue
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError("No se pudo registrar la alerta de caso detenido") from exc
        if not recipients:
            logger.warning("Stalled case %s has no one to notify", candidate.case_id)
        flagged.append(candidate.case_id)

    logger.info("Stalled-case scan (%s days): %d newly flagged", threshold_days, len(flagged))
    return flagged


def acknowledge_flag(flag_id: int) -> StalledCaseFlag:
    flag = db.session.get(StalledCaseFlag, flag_id)
    if not flag:
        raise NotFoundError("Alerta no encontrada")
    if flag.acknowledged_at is None:
        flag.acknowledged_at = utcnow()
        db.session.commit()
    return flag


def open_flags(case_id: int | None = None) -> list[StalledCaseFlag]:
    query = StalledCaseFlag.query.filter(StalledCaseFlag.acknowledged_at.is_(None))
    if case_id is not None:
        query = query.filter_by(case_id=case_id)
    return query.order_by(StalledCaseFlag.flagged_at.desc()).all()


def notifications_for(user_id: int, unread_only: bool = False) -> list[NotificationRecipient]:
    query = NotificationRecipient.query.filter_by(user_id=user_id)
    if unread_only:
        query = query.filter(NotificationRecipient.reviewed_at.is_(None))
    return query.order_by(NotificationRecipient.id.desc()).all()
