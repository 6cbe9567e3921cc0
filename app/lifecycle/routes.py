from __future__ import annotations

from flask import jsonify, request
from flask_login import login_required

from app.core.auth import current_actor
from app.core.models import Appointment, Assignment, Beneficiary, CaseAction, StatusEntry, SupportDocument, UserRole
from app.core.permissions import require_actor, require_role
from app.core.utils import iso
from app.lifecycle import lifecycle_bp
from app.lifecycle import services
from app.lifecycle.assignments import list_assignments
from app.lifecycle.audit import case_audit_trail
from app.lifecycle.authorization import Action, ResourceKind, ResourceRef, require
from app.lifecycle.errors import ValidationError
from app.lifecycle.notifier import acknowledge_flag, notifications_for
from app.lifecycle.status_history import list_statuses, status_by_id, status_by_name


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError("El cuerpo de la petición debe ser un objeto JSON")
    return data


def _flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on", "si", "sí"}


def _optional_int(name: str) -> int | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"Valor inválido para {name}") from exc


def _entry_json(entry: StatusEntry | None) -> dict | None:
    if entry is None:
        return None
    return {
        "id": entry.id,
        "case_id": entry.case_id,
        "status_id": entry.status_id,
        "status": entry.status.name,
        "actor_id": entry.actor_id,
        "actor_name": entry.actor_name,
        "reason": entry.reason,
        "recorded_at": iso(entry.recorded_at),
    }


def _assignment_json(assignment: Assignment) -> dict:
    return {
        "id": assignment.id,
        "case_id": assignment.case_id,
        "term": assignment.term.code,
        "person_id": assignment.person_id,
        "person_kind": assignment.person_kind.value,
        "state": assignment.state.value,
        "assigned_at": iso(assignment.assigned_at),
        "deactivated_at": iso(assignment.deactivated_at),
    }


def _action_json(action: CaseAction) -> dict:
    return {
        "id": action.id,
        "case_id": action.case_id,
        "title": action.title,
        "notes": action.notes,
        "performed_on": iso(action.performed_on),
        "created_by_user_id": action.created_by_user_id,
    }


def _appointment_json(appointment: Appointment) -> dict:
    return {
        "id": appointment.id,
        "case_id": appointment.case_id,
        "scheduled_for": iso(appointment.scheduled_for),
        "notes": appointment.notes,
    }


def _support_json(support: SupportDocument) -> dict:
    return {
        "id": support.id,
        "case_id": support.case_id,
        "description": support.description,
        "external_url": support.external_url,
        "uploaded_at": iso(support.uploaded_at),
    }


def _beneficiary_json(beneficiary: Beneficiary) -> dict:
    return {
        "id": beneficiary.id,
        "case_id": beneficiary.case_id,
        "national_id": beneficiary.national_id,
        "full_name": beneficiary.full_name,
        "relationship_to_applicant": beneficiary.relationship_to_applicant,
    }


def _resolve_status_id(data: dict) -> int:
    if data.get("status_id") not in (None, ""):
        try:
            status_id = int(data["status_id"])
        except (TypeError, ValueError) as exc:
            raise ValidationError("Valor inválido para status_id") from exc
        return status_by_id(status_id).id
    if data.get("status"):
        return status_by_name(data["status"]).id
    raise ValidationError("Falta el estatus destino")


@lifecycle_bp.get("/statuses")
@login_required
def statuses():
    return jsonify([{"id": s.id, "name": s.name, "is_active": s.is_active} for s in list_statuses()])


@lifecycle_bp.post("/cases")
@login_required
@require_actor
def open_case():
    case = services.open_case(current_actor(), _payload())
    return jsonify({"id": case.id, "status": _entry_json(services.current_status(case.id))}), 201


@lifecycle_bp.get("/cases/<int:case_id>/status")
@login_required
@require_actor
def case_status(case_id: int):
    require(current_actor(), Action.VIEW, ResourceKind.CASE, ResourceRef(case_id=case_id))
    return jsonify({"case_id": case_id, "current": _entry_json(services.current_status(case_id))})


@lifecycle_bp.post("/cases/<int:case_id>/status")
@login_required
@require_actor
def change_status(case_id: int):
    data = _payload()
    entry = services.change_status(
        current_actor(),
        case_id,
        _resolve_status_id(data),
        data.get("reason") or "",
        allow_same=_flag(data.get("allow_same")),
    )
    return jsonify(_entry_json(entry)), 201


@lifecycle_bp.get("/cases/<int:case_id>/history")
@login_required
@require_actor
def case_history(case_id: int):
    require(current_actor(), Action.VIEW, ResourceKind.CASE, ResourceRef(case_id=case_id))
    return jsonify([_entry_json(entry) for entry in services.history(case_id)])


@lifecycle_bp.get("/cases/<int:case_id>/audit")
@login_required
@require_role(UserRole.PROFESSOR, UserRole.COORDINATOR, UserRole.ADMINISTRATOR)
def case_audit(case_id: int):
    return jsonify(
        [
            {
                "entity_type": record.entity_type.value,
                "entity_id": record.entity_id,
                "field": record.field,
                "old_value": record.old_value,
                "new_value": record.new_value,
                "responsible_id": record.responsible_id,
                "responsible_name": record.responsible_name,
                "recorded_at": iso(record.recorded_at),
            }
            for record in case_audit_trail(case_id)
        ]
    )


@lifecycle_bp.get("/cases/<int:case_id>/assignments")
@login_required
@require_actor
def case_assignments(case_id: int):
    require(current_actor(), Action.VIEW, ResourceKind.ASSIGNMENT, ResourceRef(case_id=case_id))
    term = (request.args.get("term") or "").strip() or None
    kind = (request.args.get("kind") or "").strip() or None
    active = services.active_assignees(case_id, term, kind)
    rows = list_assignments(case_id, include_inactive=_flag(request.args.get("all")))
    return jsonify(
        {
            "case_id": case_id,
            "active_person_ids": sorted(active),
            "assignments": [_assignment_json(row) for row in rows],
        }
    )


@lifecycle_bp.post("/cases/<int:case_id>/assignments")
@login_required
@require_actor
def assign_person(case_id: int):
    data = _payload()
    try:
        person_id = int(data.get("person_id"))
    except (TypeError, ValueError) as exc:
        raise ValidationError("Valor inválido para person_id") from exc
    assignment = services.assign_person(
        current_actor(),
        case_id,
        data.get("term") or "",
        person_id,
        data.get("kind") or "",
        replace=_flag(data.get("replace")),
    )
    return jsonify(_assignment_json(assignment)), 201


@lifecycle_bp.post("/cases/<int:case_id>/assignments/repair")
@login_required
@require_actor
def repair_assignments(case_id: int):
    data = _payload()
    deactivated = services.repair_duplicate_assignments(current_actor(), case_id, data.get("term") or "")
    return jsonify({"case_id": case_id, "deactivated": deactivated})


@lifecycle_bp.post("/assignments/<int:assignment_id>/deactivate")
@login_required
@require_actor
def deactivate_assignment(assignment_id: int):
    assignment = services.deactivate_assignment(current_actor(), assignment_id)
    return jsonify(_assignment_json(assignment))


@lifecycle_bp.get("/authorization")
@login_required
def authorization():
    decision = services.evaluate_permission(
        current_actor(),
        request.args.get("action") or "",
        request.args.get("resource") or "",
        ResourceRef(
            case_id=_optional_int("case_id"),
            entity_id=_optional_int("entity_id"),
            person_id=_optional_int("person_id"),
        ),
    )
    return jsonify({"allowed": decision.allowed, "reason": decision.reason})


@lifecycle_bp.post("/notifications/stalled-scan")
@login_required
@require_role(UserRole.COORDINATOR, UserRole.ADMINISTRATOR)
def stalled_scan():
    data = _payload()
    threshold = data.get("threshold_days")
    if threshold not in (None, ""):
        try:
            threshold = int(threshold)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Valor inválido para threshold_days") from exc
    else:
        threshold = None
    flagged = services.scan_stalled(threshold)
    return jsonify({"flagged_case_ids": flagged})


@lifecycle_bp.post("/notifications/flags/<int:flag_id>/acknowledge")
@login_required
@require_role(UserRole.PROFESSOR, UserRole.COORDINATOR, UserRole.ADMINISTRATOR)
def acknowledge_stalled_flag(flag_id: int):
    flag = acknowledge_flag(flag_id)
    return jsonify({"id": flag.id, "acknowledged_at": iso(flag.acknowledged_at)})


@lifecycle_bp.get("/notifications")
@login_required
@require_actor
def my_notifications():
    actor = current_actor()
    rows = notifications_for(actor.person_id, unread_only=_flag(request.args.get("unread")))
    return jsonify(
        [
            {
                "id": row.id,
                "message": row.notification.message,
                "case_id": row.notification.related_case_id,
                "created_at": iso(row.notification.created_at),
                "reviewed_at": iso(row.reviewed_at),
            }
            for row in rows
        ]
    )


@lifecycle_bp.post("/cases/<int:case_id>/actions")
@login_required
@require_actor
def create_case_action(case_id: int):
    action = services.record_case_action(current_actor(), case_id, _payload())
    return jsonify(_action_json(action)), 201


@lifecycle_bp.patch("/actions/<int:action_id>")
@login_required
@require_actor
def edit_case_action(action_id: int):
    action = services.update_case_action(current_actor(), action_id, _payload())
    return jsonify(_action_json(action))


@lifecycle_bp.delete("/actions/<int:action_id>")
@login_required
@require_actor
def delete_case_action(action_id: int):
    services.delete_case_action(current_actor(), action_id)
    return "", 204


@lifecycle_bp.post("/cases/<int:case_id>/appointments")
@login_required
@require_actor
def create_appointment(case_id: int):
    appointment = services.schedule_appointment(current_actor(), case_id, _payload())
    return jsonify(_appointment_json(appointment)), 201


@lifecycle_bp.patch("/appointments/<int:appointment_id>")
@login_required
@require_actor
def edit_appointment(appointment_id: int):
    appointment = services.update_appointment(current_actor(), appointment_id, _payload())
    return jsonify(_appointment_json(appointment))


@lifecycle_bp.delete("/appointments/<int:appointment_id>")
@login_required
@require_actor
def delete_appointment(appointment_id: int):
    services.delete_appointment(current_actor(), appointment_id)
    return "", 204


@lifecycle_bp.post("/cases/<int:case_id>/supports")
@login_required
@require_actor
def create_support_document(case_id: int):
    support = services.add_support_document(current_actor(), case_id, _payload())
    return jsonify(_support_json(support)), 201


@lifecycle_bp.patch("/supports/<int:support_id>")
@login_required
@require_actor
def edit_support_document(support_id: int):
    support = services.update_support_document(current_actor(), support_id, _payload())
    return jsonify(_support_json(support))


@lifecycle_bp.delete("/supports/<int:support_id>")
@login_required
@require_actor
def delete_support_document(support_id: int):
    services.delete_support_document(current_actor(), support_id)
    return "", 204


@lifecycle_bp.post("/cases/<int:case_id>/beneficiaries")
@login_required
@require_actor
def create_beneficiary(case_id: int):
    beneficiary = services.add_beneficiary(current_actor(), case_id, _payload())
    return jsonify(_beneficiary_json(beneficiary)), 201


@lifecycle_bp.patch("/beneficiaries/<int:beneficiary_id>")
@login_required
@require_actor
def edit_beneficiary(beneficiary_id: int):
    beneficiary = services.update_beneficiary(current_actor(), beneficiary_id, _payload())
    return jsonify(_beneficiary_json(beneficiary))


@lifecycle_bp.delete("/beneficiaries/<int:beneficiary_id>")
@login_required
@require_actor
def delete_beneficiary(beneficiary_id: int):
    services.remove_beneficiary(current_actor(), beneficiary_id)
    return "", 204


@lifecycle_bp.patch("/applicants/<int:applicant_id>")
@login_required
@require_actor
def edit_applicant(applicant_id: int):
    applicant = services.update_applicant(current_actor(), applicant_id, _payload())
    return jsonify(
        {
            "id": applicant.id,
            "national_id": applicant.national_id,
            "first_name": applicant.first_name,
            "last_name": applicant.last_name,
            "phone": applicant.phone,
            "email": applicant.email,
            "address": applicant.address,
        }
    )


@lifecycle_bp.patch("/users/<int:user_id>")
@login_required
@require_actor
def edit_user(user_id: int):
    user = services.update_user_profile(current_actor(), user_id, _payload())
    return jsonify(
        {
            "id": user.id,
            "full_name": user.full_name,
            "email": user.email,
            "phone": user.phone,
            "role": user.role.value,
            "is_active": user.is_active,
        }
    )
