from __future__ import annotations

from datetime import date, datetime

from app.core.models import as_utc


def iso(value: date | datetime | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value.isoformat()
