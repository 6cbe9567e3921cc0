from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy import text

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.auth import Actor
from app.core.config import Config
from app.core.extensions import db
from app.core.models import User, seed_demo_data


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    STALLED_SCAN_ON_STATUS_CHANGE = False
    STORE_TIMEOUT_SECONDS = None


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def actor_for(app):
    def _actor(email: str) -> Actor:
        user = User.query.filter_by(email=email).one()
        return Actor.from_user(user)

    return _actor


@pytest.fixture
def login_as(client):
    def _login(email: str, password: str):
        return client.post("/auth/login", json={"email": email, "password": password})

    return _login


@pytest.fixture
def login_coordinator(login_as):
    def _login():
        return login_as("coordinador@clinica.local", "coord123")

    return _login


@pytest.fixture
def login_student(login_as):
    def _login(number: int = 1):
        return login_as(f"alumno{number}@clinica.local", "alumno123")

    return _login


@pytest.fixture
def legacy_assignment_table(app):
    """Simulate a database where the one-active index was dropped."""
    db.session.execute(text("DROP INDEX ix_assignment_one_active"))
    db.session.commit()
    return app
