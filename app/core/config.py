from __future__ import annotations

import os


def _env_flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str) -> float | None:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else None


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///clinic.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    APP_ENV = os.getenv("APP_ENV", "")

    # Case lifecycle
    DEFAULT_CASE_STATUS = os.getenv("DEFAULT_CASE_STATUS", "En Proceso")
    STALLED_CASE_THRESHOLD_DAYS = int(os.getenv("STALLED_CASE_THRESHOLD_DAYS", "180"))
    STALLED_SCAN_ON_STATUS_CHANGE = _env_flag("STALLED_SCAN_ON_STATUS_CHANGE")
    # Seconds; None disables the per-transaction statement timeout.
    STORE_TIMEOUT_SECONDS = _env_float("STORE_TIMEOUT_SECONDS")
