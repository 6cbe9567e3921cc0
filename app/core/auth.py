from __future__ import annotations

from dataclasses import dataclass

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from app.core.models import User, UserRole

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@dataclass(frozen=True)
class Actor:
    """Authenticated identity performing an operation."""

    person_id: int
    role: UserRole
    name: str

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    @classmethod
    def from_user(cls, user: User) -> Actor:
        return cls(person_id=user.id, role=user.role, name=user.full_name)


def current_actor() -> Actor | None:
    if not current_user.is_authenticated:
        return None
    return Actor.from_user(current_user)


def _credentials() -> tuple[str, str]:
    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    return email, password


@auth_bp.post("/login")
def login_post():
    email, password = _credentials()
    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        return jsonify({"error": "Credenciales inválidas"}), 401
    login_user(user)
    return jsonify({"id": user.id, "name": user.full_name, "role": user.role.value})


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@auth_bp.get("/me")
@login_required
def me():
    actor = current_actor()
    return jsonify({"id": actor.person_id, "name": actor.name, "role": actor.role.value})
