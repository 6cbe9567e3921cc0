from __future__ import annotations

import pytest

from app.core.models import CaseAction, User
from app.lifecycle import services
from app.lifecycle.authorization import Action, ResourceKind, ResourceRef, evaluate, require
from app.lifecycle.errors import PermissionDenied, ValidationError


def test_non_student_roles_are_always_allowed(app, actor_for):
    for email in ("admin@clinica.local", "coordinador@clinica.local", "profesor@clinica.local"):
        actor = actor_for(email)
        for action in Action:
            for kind in ResourceKind:
                assert evaluate(actor, action, kind, ResourceRef(case_id=2)).allowed


def test_anonymous_actor_is_denied(app):
    decision = evaluate(None, Action.VIEW, ResourceKind.CASE, ResourceRef(case_id=1))
    assert not decision
    assert decision.reason == "No autorizado"


def test_student_case_rules(app, actor_for):
    student = actor_for("alumno1@clinica.local")

    assert evaluate(student, Action.CREATE, ResourceKind.CASE).allowed
    assert evaluate(student, Action.VIEW, ResourceKind.CASE, ResourceRef(case_id=2)).allowed
    assert evaluate(student, Action.EDIT, ResourceKind.CASE, ResourceRef(case_id=1)).allowed

    denied = evaluate(student, Action.EDIT, ResourceKind.CASE, ResourceRef(case_id=2))
    assert not denied.allowed
    assert denied.reason == "Solo puedes editar casos en los que participas"
    assert not evaluate(student, Action.DELETE, ResourceKind.CASE, ResourceRef(case_id=1)).allowed
    assert not evaluate(student, Action.EDIT, ResourceKind.CASE).allowed


@pytest.mark.parametrize(
    "kind", [ResourceKind.APPOINTMENT, ResourceKind.SUPPORT, ResourceKind.ACTION, ResourceKind.BENEFICIARY]
)
def test_student_case_scoped_resources_follow_participation(app, actor_for, kind):
    student = actor_for("alumno1@clinica.local")

    for action in (Action.CREATE, Action.EDIT, Action.VIEW):
        assert evaluate(student, action, kind, ResourceRef(case_id=1)).allowed
        assert not evaluate(student, action, kind, ResourceRef(case_id=2)).allowed
    delete = evaluate(student, Action.DELETE, kind, ResourceRef(case_id=1))
    assert not delete.allowed
    assert delete.reason.startswith("Solo los docentes pueden eliminar")


def test_owning_case_is_resolved_from_entity(app, actor_for):
    action = CaseAction.query.filter_by(case_id=1).first()

    assert evaluate(
        actor_for("alumno1@clinica.local"), Action.EDIT, ResourceKind.ACTION, ResourceRef(entity_id=action.id)
    ).allowed
    assert not evaluate(
        actor_for("alumno2@clinica.local"), Action.EDIT, ResourceKind.ACTION, ResourceRef(entity_id=action.id)
    ).allowed


def test_case_named_by_caller_must_own_the_entity(app, actor_for):
    outsider = actor_for("alumno2@clinica.local")
    services.assign_person(actor_for("coordinador@clinica.local"), 2, "2025-1", outsider.person_id, "STUDENT")
    action = CaseAction.query.filter_by(case_id=1).first()

    # Participating in case 2 does not open an action of case 1 by naming case 2.
    decision = evaluate(outsider, Action.EDIT, ResourceKind.ACTION, ResourceRef(case_id=2, entity_id=action.id))
    assert not decision.allowed
    assert decision.reason == "El registro no pertenece al caso indicado"

    participant = actor_for("alumno1@clinica.local")
    assert not evaluate(participant, Action.EDIT, ResourceKind.ACTION, ResourceRef(case_id=2, entity_id=action.id))
    assert evaluate(participant, Action.EDIT, ResourceKind.ACTION, ResourceRef(case_id=1, entity_id=action.id))


def test_student_request_without_resolvable_case_is_denied(app, actor_for):
    student = actor_for("alumno1@clinica.local")

    assert not evaluate(student, Action.EDIT, ResourceKind.ACTION, ResourceRef()).allowed
    assert not evaluate(student, Action.EDIT, ResourceKind.APPOINTMENT, ResourceRef(entity_id=9999)).allowed


def test_student_applicant_and_assignment_rules(app, actor_for):
    student = actor_for("alumno2@clinica.local")

    assert evaluate(student, Action.CREATE, ResourceKind.APPLICANT).allowed
    assert evaluate(student, Action.EDIT, ResourceKind.APPLICANT, ResourceRef(entity_id=1)).allowed
    assert not evaluate(student, Action.DELETE, ResourceKind.APPLICANT, ResourceRef(entity_id=1)).allowed

    assert evaluate(student, Action.VIEW, ResourceKind.ASSIGNMENT, ResourceRef(case_id=1)).allowed
    for action in (Action.CREATE, Action.EDIT, Action.DELETE):
        assert not evaluate(student, action, ResourceKind.ASSIGNMENT, ResourceRef(case_id=1)).allowed


def test_student_may_only_touch_own_user_record(app, actor_for):
    student = actor_for("alumno1@clinica.local")
    other = User.query.filter_by(email="alumno2@clinica.local").one()

    assert evaluate(student, Action.VIEW, ResourceKind.USER, ResourceRef(person_id=student.person_id)).allowed
    assert evaluate(student, Action.EDIT, ResourceKind.USER, ResourceRef(person_id=student.person_id)).allowed
    assert not evaluate(student, Action.EDIT, ResourceKind.USER, ResourceRef(person_id=other.id)).allowed
    assert not evaluate(student, Action.DELETE, ResourceKind.USER, ResourceRef(person_id=student.person_id)).allowed


def test_accepts_string_action_and_kind(app, actor_for):
    student = actor_for("alumno1@clinica.local")

    assert evaluate(student, "edit", "case", ResourceRef(case_id=1)).allowed
    with pytest.raises(ValidationError):
        evaluate(student, "edit", "invoice", ResourceRef(case_id=1))
    with pytest.raises(ValidationError):
        evaluate(student, "approve", "case", ResourceRef(case_id=1))


def test_require_raises_with_reason(app, actor_for):
    with pytest.raises(PermissionDenied, match="Solo puedes editar casos en los que participas"):
        require(actor_for("alumno3@clinica.local"), Action.EDIT, ResourceKind.CASE, ResourceRef(case_id=1))
