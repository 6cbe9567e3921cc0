from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import FlushError

from app.core.auth import Actor
from app.core.extensions import db
from app.core.models import (
    LEGAL_LEVEL_PARENT,
    Applicant,
    Appointment,
    Assignment,
    AssignmentState,
    AuditEntity,
    Beneficiary,
    Case,
    CaseAction,
    LegalCategory,
    LegalLevel,
    Office,
    PersonKind,
    ProcedureType,
    StatusEntry,
    SupportDocument,
    User,
    UserRole,
    as_utc,
)
from app.lifecycle import assignments as assignment_store
from app.lifecycle import status_history
from app.lifecycle.audit import AuditResult, diff_fields, log_change
from app.lifecycle.authorization import (
    CASE_SCOPED_MODELS,
    Action,
    Decision,
    ResourceKind,
    ResourceRef,
    evaluate,
    require,
)
from app.lifecycle.errors import ConflictError, NotFoundError, PermissionDenied, ValidationError
from app.lifecycle.notifier import (
    DatabaseNotificationSink,
    NotificationSink,
    active_coordinator_ids,
    case_staff_ids,
    notify_many,
    scan_stalled_cases,
)
from app.lifecycle.transaction import unit_of_work

logger = logging.getLogger(__name__)

PERSON_KIND_ROLE: dict[PersonKind, UserRole] = {
    PersonKind.STUDENT: UserRole.STUDENT,
    PersonKind.PROFESSOR: UserRole.PROFESSOR,
}

APPLICANT_TRACKED_FIELDS = ("first_name", "last_name", "phone", "email", "address")
USER_PROFILE_FIELDS = ("full_name", "email", "phone")
USER_ADMIN_FIELDS = ("role", "is_active")
ACTION_TRACKED_FIELDS = ("title", "notes", "performed_on")
APPOINTMENT_TRACKED_FIELDS = ("scheduled_for", "notes")
SUPPORT_TRACKED_FIELDS = ("description", "external_url")
BENEFICIARY_TRACKED_FIELDS = ("national_id", "full_name", "relationship_to_applicant")


def _parse_int(value: Any, field_name: str, required: bool = True) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"Falta {field_name}")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Valor inválido para {field_name}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Valor inválido para {field_name}") from exc


def _parse_optional_iso_date(value: Any, field_name: str) -> date | None:
    raw = (value or "").strip() if isinstance(value, str) else value
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Formato de fecha inválido para {field_name}") from exc


def _audit(
    entity_type: AuditEntity,
    entity_id: Any,
    fields: dict[str, tuple[Any, Any]],
    actor: Actor | None,
    case_id: int | None = None,
) -> None:
    result: AuditResult = log_change(entity_type, entity_id, fields, actor, case_id=case_id)
    # Audit failures degrade the trail, never the operation; log_change already warned.
    if not result.ok:
        logger.debug("Audit result discarded for %s %s", entity_type.value, entity_id)


def _notify_best_effort(person_ids: set[int], message: str, case_id: int, sink: NotificationSink | None) -> None:
    if not person_ids:
        return
    try:
        notify_many(sink or DatabaseNotificationSink(), person_ids, message, case_id)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Notification for case %s not delivered: %s", case_id, exc)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def current_status(case_id: int) -> StatusEntry | None:
    status_history.case_by_id(case_id)
    return status_history.current_status(case_id)


def history(case_id: int) -> list[StatusEntry]:
    status_history.case_by_id(case_id)
    return status_history.history(case_id)


def active_assignees(case_id: int, term: str | None = None, kind: str | PersonKind | None = None) -> set[int]:
    status_history.case_by_id(case_id)
    return assignment_store.active_assignees(case_id, term, kind)


def evaluate_permission(
    actor: Actor | None,
    action: str | Action,
    resource_kind: str | ResourceKind,
    resource_ref: ResourceRef | None = None,
) -> Decision:
    return evaluate(actor, action, resource_kind, resource_ref)


def scan_stalled(threshold_days: int | None = None, sink: NotificationSink | None = None) -> list[int]:
    if threshold_days is None:
        threshold_days = current_app.config["STALLED_CASE_THRESHOLD_DAYS"]
    return scan_stalled_cases(threshold_days, sink=sink)


# ---------------------------------------------------------------------------
# Case lifecycle
# ---------------------------------------------------------------------------


def _validate_legal_scope(scope_id: int | None) -> LegalCategory | None:
    if scope_id is None:
        return None
    node = db.session.get(LegalCategory, scope_id)
    if not node:
        raise NotFoundError("Ámbito legal no encontrado")
    if node.level != LegalLevel.AMBITO:
        raise ValidationError("El caso debe clasificarse en un ámbito legal")
    cursor = node
    while cursor.parent is not None:
        if LEGAL_LEVEL_PARENT[cursor.level] != cursor.parent.level:
            raise ValidationError("Clasificación legal inconsistente")
        cursor = cursor.parent
    if cursor.level != LegalLevel.MATERIA:
        raise ValidationError("Clasificación legal incompleta")
    return node


def _reference(model, value: Any, field_name: str, label: str):
    ref_id = _parse_int(value, field_name, required=False)
    if ref_id is None:
        return None
    if not db.session.get(model, ref_id):
        raise NotFoundError(f"{label} no encontrado")
    return ref_id


def open_case(actor: Actor | None, payload: dict[str, Any], timeout: float | None = None) -> Case:
    """Create a case together with its first status entry."""
    require(actor, Action.CREATE, ResourceKind.CASE)
    applicant_id = _parse_int(payload.get("applicant_id"), "applicant_id")
    if not db.session.get(Applicant, applicant_id):
        raise NotFoundError("Solicitante no encontrado")
    scope = _validate_legal_scope(_parse_int(payload.get("legal_scope_id"), "legal_scope_id", required=False))
    office_id = _reference(Office, payload.get("office_id"), "office_id", "Núcleo")
    procedure_type_id = _reference(ProcedureType, payload.get("procedure_type_id"), "procedure_type_id", "Trámite")
    initial = status_history.status_by_name(current_app.config["DEFAULT_CASE_STATUS"])
    case_number = _parse_int(payload.get("case_id"), "case_id", required=False)

    with unit_of_work(timeout):
        case = Case(
            id=case_number,
            applicant_id=applicant_id,
            legal_scope_id=scope.id if scope else None,
            office_id=office_id,
            procedure_type_id=procedure_type_id,
            summary=(payload.get("summary") or "").strip(),
        )
        db.session.add(case)
        try:
            db.session.flush()
        except (IntegrityError, FlushError) as exc:
            if case_number is None:
                raise
            # The primary key decides; a concurrent opener may hold the number.
            raise ConflictError(f"El caso #{case_number} ya existe") from exc
        status_history.record_transition(
            case.id,
            initial.id,
            actor.person_id,
            actor.name,
            (payload.get("reason") or "").strip() or "Apertura del caso",
        )

    _audit(AuditEntity.CASE, case.id, {"status": (None, initial.name)}, actor, case_id=case.id)
    logger.info("Case %s opened by %s", case.id, actor.person_id)
    return case


def change_status(
    actor: Actor | None,
    case_id: int,
    new_status_id: int,
    reason: str,
    allow_same: bool = False,
    timeout: float | None = None,
    sink: NotificationSink | None = None,
) -> StatusEntry:
    ref = ResourceRef(case_id=case_id)
    require(actor, Action.EDIT, ResourceKind.CASE, ref)
    status_history.case_by_id(case_id)
    new_status = status_history.status_by_id(new_status_id)
    previous = status_history.current_status(case_id)
    previous_name = previous.status.name if previous else None
    if previous and previous.status_id == new_status.id and not allow_same:
        raise ValidationError(f"El caso #{case_id} ya está en estatus {new_status.name}")

    with unit_of_work(timeout):
        # Assignment state may have changed since the first check.
        require(actor, Action.EDIT, ResourceKind.CASE, ref)
        entry = status_history.record_transition(case_id, new_status.id, actor.person_id, actor.name, reason)

    _audit(AuditEntity.CASE, case_id, {"status": (previous_name, new_status.name)}, actor, case_id=case_id)

    recipients = case_staff_ids(case_id) | active_coordinator_ids()
    recipients.discard(actor.person_id)
    _notify_best_effort(
        recipients,
        f"El caso #{case_id} ha cambiado su estatus a {new_status.name}.",
        case_id,
        sink,
    )

    if current_app.config.get("STALLED_SCAN_ON_STATUS_CHANGE"):
        try:
            scan_stalled(sink=sink)
        except Exception:
            logger.exception("Stalled-case scan after status change of case %s failed", case_id)
    return entry


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


def _assignable_person(person_id: int, kind: PersonKind) -> User:
    person = db.session.get(User, person_id)
    if not person:
        raise NotFoundError("Persona no encontrada")
    if not person.is_active:
        raise ValidationError(f"{person.full_name} no está activo")
    if person.role != PERSON_KIND_ROLE[kind]:
        raise ValidationError(f"{person.full_name} no tiene el rol requerido para la asignación")
    return person


def assign_person(
    actor: Actor | None,
    case_id: int,
    term: str,
    person_id: int,
    kind: str | PersonKind,
    replace: bool = False,
    timeout: float | None = None,
    sink: NotificationSink | None = None,
) -> Assignment:
    ref = ResourceRef(case_id=case_id)
    require(actor, Action.EDIT, ResourceKind.ASSIGNMENT, ref)
    kind = assignment_store.parse_person_kind(kind)
    status_history.case_by_id(case_id)
    term_row = assignment_store.term_by_code(term)
    person = _assignable_person(person_id, kind)
    before = {
        row.id: row.person_id
        for row in assignment_store.list_assignments(case_id)
        if row.term_id == term_row.id and row.person_kind == kind
    }

    with unit_of_work(timeout):
        require(actor, Action.EDIT, ResourceKind.ASSIGNMENT, ref)
        assignment = assignment_store.assign(case_id, term_row.code, person.id, kind, replace=replace)

    if assignment.id in before:
        return assignment

    for replaced_id in before:
        _audit(
            AuditEntity.ASSIGNMENT,
            replaced_id,
            {"state": (AssignmentState.ACTIVE.value, AssignmentState.INACTIVE.value)},
            actor,
            case_id=case_id,
        )
    _audit(
        AuditEntity.ASSIGNMENT,
        assignment.id,
        {"state": (None, AssignmentState.ACTIVE.value), "person_id": (None, person.id)},
        actor,
        case_id=case_id,
    )
    message = (
        f"Se le ha asignado el caso #{case_id}."
        if kind == PersonKind.STUDENT
        else f"Se le ha asignado la supervisión del caso #{case_id}."
    )
    _notify_best_effort({person.id}, message, case_id, sink)
    return assignment


def deactivate_assignment(actor: Actor | None, assignment_id: int, timeout: float | None = None) -> Assignment:
    assignment = assignment_store.assignment_by_id(assignment_id)
    ref = ResourceRef(case_id=assignment.case_id, entity_id=assignment.id)
    require(actor, Action.EDIT, ResourceKind.ASSIGNMENT, ref)
    was_active = assignment.is_active

    with unit_of_work(timeout):
        require(actor, Action.EDIT, ResourceKind.ASSIGNMENT, ref)
        assignment = assignment_store.deactivate(assignment_id)

    if was_active:
        _audit(
            AuditEntity.ASSIGNMENT,
            assignment.id,
            {"state": (AssignmentState.ACTIVE.value, AssignmentState.INACTIVE.value)},
            actor,
            case_id=assignment.case_id,
        )
    return assignment


def repair_duplicate_assignments(
    actor: Actor | None,
    case_id: int,
    term: str,
    timeout: float | None = None,
) -> int:
    ref = ResourceRef(case_id=case_id)
    require(actor, Action.EDIT, ResourceKind.ASSIGNMENT, ref)
    status_history.case_by_id(case_id)
    with unit_of_work(timeout):
        deactivated = assignment_store.repair_duplicates(case_id, term)
    if deactivated:
        _audit(
            AuditEntity.ASSIGNMENT,
            f"{case_id}:{term}",
            {"duplicates_deactivated": (0, deactivated)},
            actor,
            case_id=case_id,
        )
    return deactivated


def repair_all_duplicate_assignments(timeout: float | None = None) -> int:
    with unit_of_work(timeout):
        return assignment_store.repair_all_duplicates()


# ---------------------------------------------------------------------------
# Audited case-scoped and profile edits
# ---------------------------------------------------------------------------


def _snapshot(entity: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    return {name: getattr(entity, name) for name in fields}


def _required_text(payload: dict[str, Any], name: str, message: str) -> str:
    value = (payload.get(name) or "").strip()
    if not value:
        raise ValidationError(message)
    return value


def _optional_text(payload: dict[str, Any], name: str) -> str | None:
    return (payload.get(name) or "").strip() or None


def _parse_iso_datetime(value: Any, field_name: str) -> datetime:
    raw = value.strip() if isinstance(value, str) else value
    if not raw:
        raise ValidationError(f"Falta {field_name}")
    try:
        return as_utc(datetime.fromisoformat(raw))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Formato de fecha inválido para {field_name}") from exc


def _action_values(payload: dict[str, Any], partial: bool) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if not partial or "title" in payload:
        values["title"] = _required_text(payload, "title", "El título de la acción es obligatorio")
    if not partial or "notes" in payload:
        values["notes"] = (payload.get("notes") or "").strip()
    if not partial or "performed_on" in payload:
        values["performed_on"] = _parse_optional_iso_date(payload.get("performed_on"), "performed_on")
    return values


def _appointment_values(payload: dict[str, Any], partial: bool) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if not partial or "scheduled_for" in payload:
        values["scheduled_for"] = _parse_iso_datetime(payload.get("scheduled_for"), "scheduled_for")
    if not partial or "notes" in payload:
        values["notes"] = (payload.get("notes") or "").strip()
    return values


def _support_values(payload: dict[str, Any], partial: bool) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if not partial or "description" in payload:
        values["description"] = _required_text(payload, "description", "La descripción del anexo es obligatoria")
    if not partial or "external_url" in payload:
        values["external_url"] = _optional_text(payload, "external_url")
    return values


def _beneficiary_values(payload: dict[str, Any], partial: bool) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if not partial or "national_id" in payload:
        values["national_id"] = _required_text(payload, "national_id", "Falta national_id").upper()
    if not partial or "full_name" in payload:
        values["full_name"] = _required_text(payload, "full_name", "Falta full_name")
    if not partial or "relationship_to_applicant" in payload:
        values["relationship_to_applicant"] = _optional_text(payload, "relationship_to_applicant")
    return values


@dataclass(frozen=True)
class _CaseScoped:
    audit_entity: AuditEntity
    tracked: tuple[str, ...]
    parse: Callable[[dict[str, Any], bool], dict[str, Any]]
    not_found: str
    conflict: str = "El registro entra en conflicto con otro existente"
    creator_field: str | None = None


_CASE_SCOPED = {
    ResourceKind.ACTION: _CaseScoped(
        AuditEntity.ACTION,
        ACTION_TRACKED_FIELDS,
        _action_values,
        "Acción no encontrada",
        creator_field="created_by_user_id",
    ),
    ResourceKind.APPOINTMENT: _CaseScoped(
        AuditEntity.APPOINTMENT, APPOINTMENT_TRACKED_FIELDS, _appointment_values, "Cita no encontrada"
    ),
    ResourceKind.SUPPORT: _CaseScoped(
        AuditEntity.SUPPORT, SUPPORT_TRACKED_FIELDS, _support_values, "Anexo no encontrado"
    ),
    ResourceKind.BENEFICIARY: _CaseScoped(
        AuditEntity.BENEFICIARY,
        BENEFICIARY_TRACKED_FIELDS,
        _beneficiary_values,
        "Beneficiario no encontrado",
        conflict="El beneficiario ya está registrado en este caso",
    ),
}


def _flush_scoped(scoped: _CaseScoped) -> None:
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConflictError(scoped.conflict) from exc


def _scoped_entity(kind: ResourceKind, entity_id: int):
    entity = db.session.get(CASE_SCOPED_MODELS[kind], entity_id)
    if not entity:
        raise NotFoundError(_CASE_SCOPED[kind].not_found)
    return entity


def _create_case_scoped(
    actor: Actor | None,
    kind: ResourceKind,
    case_id: int,
    payload: dict[str, Any],
    timeout: float | None,
):
    scoped = _CASE_SCOPED[kind]
    ref = ResourceRef(case_id=case_id)
    require(actor, Action.CREATE, kind, ref)
    status_history.case_by_id(case_id)
    values = scoped.parse(payload, False)
    if scoped.creator_field:
        values[scoped.creator_field] = actor.person_id

    with unit_of_work(timeout):
        require(actor, Action.CREATE, kind, ref)
        entity = CASE_SCOPED_MODELS[kind](case_id=case_id, **values)
        db.session.add(entity)
        _flush_scoped(scoped)

    _audit(
        scoped.audit_entity,
        entity.id,
        diff_fields({}, _snapshot(entity, scoped.tracked), scoped.tracked),
        actor,
        case_id=case_id,
    )
    return entity


def _update_case_scoped(
    actor: Actor | None,
    kind: ResourceKind,
    entity_id: int,
    payload: dict[str, Any],
    timeout: float | None,
):
    scoped = _CASE_SCOPED[kind]
    entity = _scoped_entity(kind, entity_id)
    ref = ResourceRef(case_id=entity.case_id, entity_id=entity.id)
    require(actor, Action.EDIT, kind, ref)
    old = _snapshot(entity, scoped.tracked)
    changes = scoped.parse(payload, True)

    with unit_of_work(timeout):
        require(actor, Action.EDIT, kind, ref)
        for name, value in changes.items():
            setattr(entity, name, value)
        db.session.add(entity)
        _flush_scoped(scoped)

    _audit(
        scoped.audit_entity,
        entity.id,
        diff_fields(old, _snapshot(entity, scoped.tracked), scoped.tracked),
        actor,
        case_id=entity.case_id,
    )
    return entity


def _delete_case_scoped(actor: Actor | None, kind: ResourceKind, entity_id: int, timeout: float | None) -> None:
    scoped = _CASE_SCOPED[kind]
    entity = _scoped_entity(kind, entity_id)
    case_id = entity.case_id
    ref = ResourceRef(case_id=case_id, entity_id=entity.id)
    require(actor, Action.DELETE, kind, ref)
    old = _snapshot(entity, scoped.tracked)

    with unit_of_work(timeout):
        require(actor, Action.DELETE, kind, ref)
        db.session.delete(entity)

    _audit(scoped.audit_entity, entity_id, diff_fields(old, {}, scoped.tracked), actor, case_id=case_id)
    logger.info("%s %s of case %s deleted by %s", kind.value, entity_id, case_id, actor.person_id)


def record_case_action(actor: Actor | None, case_id: int, payload: dict[str, Any], timeout: float | None = None) -> CaseAction:
    return _create_case_scoped(actor, ResourceKind.ACTION, case_id, payload, timeout)


def update_case_action(actor: Actor | None, action_id: int, payload: dict[str, Any], timeout: float | None = None) -> CaseAction:
    return _update_case_scoped(actor, ResourceKind.ACTION, action_id, payload, timeout)


def delete_case_action(actor: Actor | None, action_id: int, timeout: float | None = None) -> None:
    _delete_case_scoped(actor, ResourceKind.ACTION, action_id, timeout)


def schedule_appointment(actor: Actor | None, case_id: int, payload: dict[str, Any], timeout: float | None = None) -> Appointment:
    return _create_case_scoped(actor, ResourceKind.APPOINTMENT, case_id, payload, timeout)


def update_appointment(
    actor: Actor | None, appointment_id: int, payload: dict[str, Any], timeout: float | None = None
) -> Appointment:
    return _update_case_scoped(actor, ResourceKind.APPOINTMENT, appointment_id, payload, timeout)


def delete_appointment(actor: Actor | None, appointment_id: int, timeout: float | None = None) -> None:
    _delete_case_scoped(actor, ResourceKind.APPOINTMENT, appointment_id, timeout)


def add_support_document(
    actor: Actor | None, case_id: int, payload: dict[str, Any], timeout: float | None = None
) -> SupportDocument:
    return _create_case_scoped(actor, ResourceKind.SUPPORT, case_id, payload, timeout)


def update_support_document(
    actor: Actor | None, support_id: int, payload: dict[str, Any], timeout: float | None = None
) -> SupportDocument:
    return _update_case_scoped(actor, ResourceKind.SUPPORT, support_id, payload, timeout)


def delete_support_document(actor: Actor | None, support_id: int, timeout: float | None = None) -> None:
    _delete_case_scoped(actor, ResourceKind.SUPPORT, support_id, timeout)


def add_beneficiary(actor: Actor | None, case_id: int, payload: dict[str, Any], timeout: float | None = None) -> Beneficiary:
    return _create_case_scoped(actor, ResourceKind.BENEFICIARY, case_id, payload, timeout)


def update_beneficiary(
    actor: Actor | None, beneficiary_id: int, payload: dict[str, Any], timeout: float | None = None
) -> Beneficiary:
    return _update_case_scoped(actor, ResourceKind.BENEFICIARY, beneficiary_id, payload, timeout)


def remove_beneficiary(actor: Actor | None, beneficiary_id: int, timeout: float | None = None) -> None:
    _delete_case_scoped(actor, ResourceKind.BENEFICIARY, beneficiary_id, timeout)



def update_applicant(actor: Actor | None, applicant_id: int, payload: dict[str, Any], timeout: float | None = None) -> Applicant:
    require(actor, Action.EDIT, ResourceKind.APPLICANT, ResourceRef(entity_id=applicant_id))
    applicant = db.session.get(Applicant, applicant_id)
    if not applicant:
        raise NotFoundError("Solicitante no encontrado")
    old = _snapshot(applicant, APPLICANT_TRACKED_FIELDS)

    changes = {name: payload[name] for name in APPLICANT_TRACKED_FIELDS if name in payload}
    for required_field in ("first_name", "last_name"):
        if required_field in changes and not (changes[required_field] or "").strip():
            raise ValidationError(f"Falta {required_field}")

    with unit_of_work(timeout):
        for name, value in changes.items():
            setattr(applicant, name, value.strip() if isinstance(value, str) else value)
        db.session.add(applicant)

    _audit(
        AuditEntity.APPLICANT,
        applicant.national_id,
        diff_fields(old, _snapshot(applicant, APPLICANT_TRACKED_FIELDS), APPLICANT_TRACKED_FIELDS),
        actor,
    )
    return applicant


def update_user_profile(actor: Actor | None, user_id: int, payload: dict[str, Any], timeout: float | None = None) -> User:
    require(actor, Action.EDIT, ResourceKind.USER, ResourceRef(person_id=user_id))
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("Usuario no encontrado")
    if actor.is_student and any(name in payload for name in USER_ADMIN_FIELDS):
        raise PermissionDenied("Los alumnos no pueden cambiar su rol ni su estado")
    tracked = USER_PROFILE_FIELDS + USER_ADMIN_FIELDS
    old = _snapshot(user, tracked)

    changes: dict[str, Any] = {}
    if "full_name" in payload:
        full_name = (payload.get("full_name") or "").strip()
        if not full_name:
            raise ValidationError("Falta full_name")
        changes["full_name"] = full_name
    if "email" in payload:
        email = (payload.get("email") or "").strip().lower()
        if "@" not in email:
            raise ValidationError("Email inválido")
        changes["email"] = email
    if "phone" in payload:
        changes["phone"] = (payload.get("phone") or "").strip()
    if "role" in payload:
        try:
            changes["role"] = UserRole[(payload.get("role") or "").strip().upper()]
        except KeyError as exc:
            raise ValidationError("Rol inválido") from exc
    if "is_active" in payload:
        changes["is_active"] = bool(payload.get("is_active"))

    with unit_of_work(timeout):
        for name, value in changes.items():
            setattr(user, name, value)
        db.session.add(user)

    _audit(AuditEntity.USER, user.national_id, diff_fields(old, _snapshot(user, tracked), tracked), actor)
    return user
