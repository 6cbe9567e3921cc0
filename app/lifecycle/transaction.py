from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.extensions import db
from app.lifecycle.errors import LifecycleError, StorageError, ValidationError

logger = logging.getLogger(__name__)


def _apply_statement_timeout(session: Session, timeout: float | None) -> None:
    if timeout is None:
        return
    if timeout <= 0:
        raise ValidationError("El tiempo límite debe ser mayor que cero")
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(text("SET LOCAL statement_timeout = :ms"), {"ms": int(timeout * 1000)})


@contextmanager
def unit_of_work(timeout: float | None = None) -> Iterator[Session]:
    """One database transaction per mutating call.

    Commits when the block exits cleanly and rolls back everything otherwise.
    SQLAlchemy failures surface as ``StorageError``; domain errors propagate
    unchanged. A statement timeout (PostgreSQL only) fails the transaction and
    is never retried here.
    """
    session = db.session
    if timeout is None:
        timeout = current_app.config.get("STORE_TIMEOUT_SECONDS")
    try:
        _apply_statement_timeout(session, timeout)
        yield session
        session.commit()
    except LifecycleError:
        session.rollback()
        raise
    except OperationalError as exc:
        session.rollback()
        logger.error("Transaction aborted by the database: %s", exc)
        raise StorageError("La base de datos no respondió a tiempo; la operación no se aplicó") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Transaction failed: %s", exc)
        raise StorageError("Error de almacenamiento; la operación no se aplicó") from exc
    except Exception:
        session.rollback()
        raise
