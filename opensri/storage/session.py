"""Database session management with the context manager pattern.

Usage:
    # Sync context manager (recommended)
    with db_session() as db:
        document = db.get(FiscalDocument, 1)
        db.commit()

    # Transaction scope on an explicit factory (repositories)
    with transaction(session_factory) as db:
        db.execute(update(...))
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session, sessionmaker

from opensri.utils.logging import get_logger

logger = get_logger(__name__)


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """Context manager for database sessions with automatic cleanup.

    Yields:
        Session: SQLAlchemy session

    Raises:
        RuntimeError: If database not initialized
        Exception: Any exception from within the context (after rollback)

    Note:
        - Session is automatically rolled back on exception
        - Session is automatically closed on exit
        - You must call db.commit() to persist changes
    """
    from opensri.storage.database.base import SessionLocal, get_session

    if SessionLocal is None:
        raise RuntimeError(
            "Database not initialized. Call init_db() first or configure OPENSRI_DATABASE_URL."
        )

    db = get_session()
    try:
        logger.debug("db_session_created", session_id=id(db))
        yield db
    except Exception as e:
        logger.error(
            "db_session_error_rollback",
            error=str(e),
            error_type=type(e).__name__,
            session_id=id(db),
        )
        db.rollback()
        raise
    finally:
        logger.debug("db_session_closed", session_id=id(db))
        db.close()


@contextmanager
def transaction(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Open a session, commit on success, roll back on error, always close.

    Every repository operation runs in its own short transaction so that no
    database lock is held while a worker waits on the tax authority, the PDF
    renderer or the SMTP server.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception as e:
        logger.debug(
            "transaction_rollback",
            error=str(e),
            error_type=type(e).__name__,
            session_id=id(db),
        )
        db.rollback()
        raise
    finally:
        db.close()
