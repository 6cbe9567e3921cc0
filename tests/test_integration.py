from __future__ import annotations

from app.core.models import Assignment, AssignmentState, StalledCaseFlag, User
from app.lifecycle.status_history import status_by_name


def test_login_and_me(client, login_coordinator):
    response = login_coordinator()
    assert response.status_code == 200
    assert response.get_json()["role"] == "COORDINATOR"

    me = client.get("/auth/me")
    assert me.get_json()["name"] == "Coordinación Clínica"


def test_bad_credentials_are_rejected(client, login_as):
    response = login_as("coordinador@clinica.local", "wrong")
    assert response.status_code == 401
    assert response.get_json() == {"error": "Credenciales inválidas"}


def test_api_requires_login(client):
    response = client.get("/api/cases/1/history")
    assert response.status_code == 401
    assert response.get_json() == {"error": "No autorizado"}


def test_change_status_flow(client, login_coordinator):
    login_coordinator()

    response = client.post("/api/cases/1/status", json={"status": "Archivado", "reason": "Caso resuelto"})
    assert response.status_code == 201
    assert response.get_json()["status"] == "Archivado"

    current = client.get("/api/cases/1/status").get_json()
    assert current["current"]["status"] == "Archivado"

    history = client.get("/api/cases/1/history").get_json()
    assert [row["status"] for row in history] == ["Archivado", "En Proceso"]

    audit = client.get("/api/cases/1/audit").get_json()
    assert audit[0]["field"] == "status"
    assert audit[0]["new_value"] == "Archivado"


def test_change_status_validation_errors(client, login_coordinator):
    login_coordinator()

    missing_reason = client.post("/api/cases/1/status", json={"status": "Pausado", "reason": ""})
    assert missing_reason.status_code == 400
    unknown = client.post("/api/cases/1/status", json={"status_id": 999, "reason": "x"})
    assert unknown.status_code == 400
    no_case = client.post("/api/cases/999/status", json={"status": "Pausado", "reason": "x"})
    assert no_case.status_code == 404


def test_student_needs_assignment_to_change_status(app, client, login_as, login_student):
    login_student(2)
    denied = client.post("/api/cases/2/status", json={"status": "Asesoría", "reason": "Cita"})
    assert denied.status_code == 403
    assert denied.get_json()["error"] == "Solo puedes editar casos en los que participas"

    decision = client.get("/api/authorization?action=EDIT&resource=CASE&case_id=2").get_json()
    assert decision["allowed"] is False

    with app.app_context():
        student_id = User.query.filter_by(email="alumno2@clinica.local").one().id

    client.post("/auth/logout")
    login_as("coordinador@clinica.local", "coord123")
    assigned = client.post(
        "/api/cases/2/assignments",
        json={"term": "2025-1", "person_id": student_id, "kind": "STUDENT"},
    )
    assert assigned.status_code == 201
    assert assigned.get_json()["state"] == "ACTIVE"

    client.post("/auth/logout")
    login_student(2)
    allowed = client.post("/api/cases/2/status", json={"status": "Asesoría", "reason": "Cita"})
    assert allowed.status_code == 201


def test_assignment_conflict_and_listing(app, client, login_coordinator):
    login_coordinator()
    with app.app_context():
        other_id = User.query.filter_by(email="alumno3@clinica.local").one().id

    conflict = client.post(
        "/api/cases/1/assignments",
        json={"term": "2025-1", "person_id": other_id, "kind": "STUDENT"},
    )
    assert conflict.status_code == 409

    replaced = client.post(
        "/api/cases/1/assignments",
        json={"term": "2025-1", "person_id": other_id, "kind": "STUDENT", "replace": True},
    )
    assert replaced.status_code == 201

    listing = client.get("/api/cases/1/assignments?term=2025-1&kind=STUDENT").get_json()
    assert listing["active_person_ids"] == [other_id]
    everything = client.get("/api/cases/1/assignments?all=1").get_json()
    assert len(everything["assignments"]) == 3


def test_deactivate_assignment_endpoint(app, client, login_coordinator):
    login_coordinator()
    with app.app_context():
        assignment_id = Assignment.query.filter_by(case_id=1, state=AssignmentState.ACTIVE).first().id

    response = client.post(f"/api/assignments/{assignment_id}/deactivate")
    assert response.status_code == 200
    assert response.get_json()["state"] == "INACTIVE"


def test_student_cannot_manage_assignments(client, login_student):
    login_student(1)

    assert client.post("/api/cases/1/assignments/repair", json={"term": "2025-1"}).status_code == 403
    assert client.post("/api/assignments/1/deactivate").status_code == 403
    assert client.get("/api/cases/1/assignments").status_code == 200


def test_stalled_scan_endpoint(app, client, login_student, login_coordinator):
    login_student(1)
    assert client.post("/api/notifications/stalled-scan", json={"threshold_days": 180}).status_code == 403

    client.post("/auth/logout")
    login_coordinator()
    response = client.post("/api/notifications/stalled-scan", json={"threshold_days": 180})
    assert response.status_code == 200
    assert response.get_json() == {"flagged_case_ids": []}
    with app.app_context():
        assert StalledCaseFlag.query.count() == 0


def test_open_case_and_record_action(app, client, login_student):
    login_student(3)

    created = client.post("/api/cases", json={"applicant_id": 1, "summary": "Consulta de herencia"})
    assert created.status_code == 201
    case_id = created.get_json()["id"]
    assert created.get_json()["status"]["status"] == "En Proceso"

    # Opening a case does not make the student a participant.
    action = client.post(f"/api/cases/{case_id}/actions", json={"title": "Revisión"})
    assert action.status_code == 403


def test_action_and_profile_edits(client, login_student):
    login_student(1)

    created = client.post("/api/cases/1/actions", json={"title": "Llamada", "notes": "Primera llamada"})
    assert created.status_code == 201
    action_id = created.get_json()["id"]

    edited = client.patch(f"/api/actions/{action_id}", json={"notes": "Llamada devuelta"})
    assert edited.get_json()["notes"] == "Llamada devuelta"

    me = client.get("/auth/me").get_json()
    profile = client.patch(f"/api/users/{me['id']}", json={"phone": "0416-1234567"})
    assert profile.status_code == 200
    assert profile.get_json()["phone"] == "0416-1234567"
    assert client.patch(f"/api/users/{me['id'] + 1}", json={"phone": "1"}).status_code == 403

    applicant = client.patch("/api/applicants/2", json={"email": "luis@example.com"})
    assert applicant.get_json()["email"] == "luis@example.com"


def test_status_catalog_endpoint(app, client, login_coordinator):
    login_coordinator()
    rows = client.get("/api/statuses").get_json()
    with app.app_context():
        archived_id = status_by_name("Archivado").id
    assert {"id": archived_id, "name": "Archivado", "is_active": False} in rows


def test_authorization_endpoint_rejects_entity_from_another_case(client, login_student):
    login_student(1)

    own = client.get("/api/authorization?action=edit&resource=action&entity_id=1&case_id=1").get_json()
    assert own["allowed"] is True
    mismatched = client.get("/api/authorization?action=edit&resource=action&entity_id=1&case_id=2").get_json()
    assert mismatched == {"allowed": False, "reason": "El registro no pertenece al caso indicado"}


def test_open_case_with_taken_number_is_conflict(client, login_coordinator):
    login_coordinator()

    response = client.post("/api/cases", json={"applicant_id": 1, "case_id": 1})
    assert response.status_code == 409
    assert response.get_json() == {"error": "El caso #1 ya existe"}


def test_case_scoped_entities_over_http(client, login_student, login_coordinator):
    login_student(1)

    appointment = client.post("/api/cases/1/appointments", json={"scheduled_for": "2025-06-02T10:00:00"})
    assert appointment.status_code == 201
    appointment_id = appointment.get_json()["id"]
    moved = client.patch(f"/api/appointments/{appointment_id}", json={"scheduled_for": "2025-06-03T10:00:00"})
    assert moved.get_json()["scheduled_for"].startswith("2025-06-03T10:00:00")

    support = client.post("/api/cases/1/supports", json={"description": "Constancia de residencia"})
    assert support.status_code == 201
    beneficiary = client.post(
        "/api/cases/1/beneficiaries", json={"national_id": "V-32000002", "full_name": "Pedro Rondón"}
    )
    assert beneficiary.status_code == 201
    duplicate = client.post(
        "/api/cases/1/beneficiaries", json={"national_id": "V-32000002", "full_name": "Pedro Rondón"}
    )
    assert duplicate.status_code == 409

    assert client.post("/api/cases/2/supports", json={"description": "Ajeno"}).status_code == 403
    assert client.delete(f"/api/appointments/{appointment_id}").status_code == 403
    assert client.delete(f"/api/supports/{support.get_json()['id']}").status_code == 403

    client.post("/auth/logout")
    login_coordinator()
    assert client.delete(f"/api/appointments/{appointment_id}").status_code == 204
    assert client.delete(f"/api/beneficiaries/{beneficiary.get_json()['id']}").status_code == 204
    assert client.patch(f"/api/appointments/{appointment_id}", json={"notes": "x"}).status_code == 404
