from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.core.auth import Actor
from app.core.extensions import db
from app.core.models import Appointment, Beneficiary, CaseAction, SupportDocument
from app.lifecycle.assignments import participates
from app.lifecycle.errors import PermissionDenied, ValidationError


class Action(str, Enum):
    CREATE = "CREATE"
    EDIT = "EDIT"
    DELETE = "DELETE"
    VIEW = "VIEW"


class ResourceKind(str, Enum):
    CASE = "CASE"
    APPOINTMENT = "APPOINTMENT"
    SUPPORT = "SUPPORT"
    ACTION = "ACTION"
    BENEFICIARY = "BENEFICIARY"
    APPLICANT = "APPLICANT"
    USER = "USER"
    ASSIGNMENT = "ASSIGNMENT"


CASE_SCOPED_MODELS = {
    ResourceKind.APPOINTMENT: Appointment,
    ResourceKind.SUPPORT: SupportDocument,
    ResourceKind.ACTION: CaseAction,
    ResourceKind.BENEFICIARY: Beneficiary,
}

_SCOPED_LABELS = {
    ResourceKind.APPOINTMENT: "citas",
    ResourceKind.SUPPORT: "anexos",
    ResourceKind.ACTION: "acciones",
    ResourceKind.BENEFICIARY: "beneficiarios",
}


@dataclass(frozen=True)
class ResourceRef:
    case_id: int | None = None
    entity_id: int | None = None
    person_id: int | None = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = Decision(True)


def _denied(reason: str) -> Decision:
    return Decision(False, reason)


def parse_action(value: str | Action) -> Action:
    if isinstance(value, Action):
        return value
    try:
        return Action[(value or "").strip().upper()]
    except KeyError as exc:
        raise ValidationError("Acción desconocida") from exc


def parse_resource_kind(value: str | ResourceKind) -> ResourceKind:
    if isinstance(value, ResourceKind):
        return value
    try:
        return ResourceKind[(value or "").strip().upper()]
    except KeyError as exc:
        raise ValidationError("Recurso no reconocido") from exc



def _student_case(actor: Actor, action: Action, ref: ResourceRef) -> Decision:
    if action == Action.CREATE:
        return ALLOWED
    if action == Action.VIEW:
        return ALLOWED
    if action == Action.DELETE:
        return _denied("Los alumnos no pueden eliminar casos")
    if ref.case_id is None:
        return _denied("Debe indicar el caso")
    if not participates(ref.case_id, actor.person_id):
        return _denied("Solo puedes editar casos en los que participas")
    return ALLOWED


def _student_case_scoped(actor: Actor, action: Action, kind: ResourceKind, ref: ResourceRef) -> Decision:
    label = _SCOPED_LABELS[kind]
    if action == Action.DELETE:
        return _denied(f"Solo los docentes pueden eliminar {label}")
    case_id = ref.case_id
    if ref.entity_id is not None:
        # The stored owner wins over whatever case the caller names.
        entity = db.session.get(CASE_SCOPED_MODELS[kind], ref.entity_id)
        if entity is None:
            return _denied(f"No se encontró el registro de {label} indicado")
        if case_id is not None and case_id != entity.case_id:
            return _denied("El registro no pertenece al caso indicado")
        case_id = entity.case_id
    if case_id is None:
        return _denied(f"No se pudo determinar el caso para gestionar {label}")
    if not participates(case_id, actor.person_id):
        return _denied(f"Solo puedes gestionar {label} de casos en los que participas")
    return ALLOWED


def _student_user(actor: Actor, action: Action, ref: ResourceRef) -> Decision:
    if action == Action.DELETE:
        return _denied("Los alumnos no pueden eliminar usuarios")
    if ref.person_id != actor.person_id:
        return _denied("No tienes permisos para ver o editar información de otros usuarios")
    return ALLOWED


def evaluate(
    actor: Actor | None,
    action: str | Action,
    resource_kind: str | ResourceKind,
    resource_ref: ResourceRef | None = None,
) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on the resource.

    Roles other than Student are always allowed. Student participation is
    read from the assignment store on every call.
    """
    if actor is None:
        return _denied("No autorizado")
    action = parse_action(action)
    kind = parse_resource_kind(resource_kind)
    ref = resource_ref or ResourceRef()

    if not actor.is_student:
        return ALLOWED

    if kind == ResourceKind.CASE:
        return _student_case(actor, action, ref)
    if kind in CASE_SCOPED_MODELS:
        return _student_case_scoped(actor, action, kind, ref)
    if kind == ResourceKind.APPLICANT:
        if action == Action.DELETE:
            return _denied("Los alumnos no pueden eliminar solicitantes")
        return ALLOWED
    if kind == ResourceKind.USER:
        return _student_user(actor, action, ref)
    if kind == ResourceKind.ASSIGNMENT:
        if action == Action.VIEW:
            return ALLOWED
        return _denied("Los alumnos solo pueden ver asignaciones, no editarlas")
    return _denied("Recurso no reconocido")


def require(
    actor: Actor | None,
    action: str | Action,
    resource_kind: str | ResourceKind,
    resource_ref: ResourceRef | None = None,
) -> None:
    decision = evaluate(actor, action, resource_kind, resource_ref)
    if not decision.allowed:
        raise PermissionDenied(decision.reason)
