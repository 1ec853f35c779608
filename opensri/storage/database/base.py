"""Database base configuration and session management."""

from collections.abc import Generator
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, MetaData, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from opensri.utils.datetime import utc_now

# Naming convention for constraints (helps with Alembic migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    """Base class for all database models."""

    metadata = metadata

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class IntPKMixin:
    """Integer autoincrement primary key."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)


# Database engine and session (will be configured at runtime)
engine: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None


def create_session_factory(bind: Engine) -> sessionmaker[Session]:
    """Session factory used by repositories.

    ``expire_on_commit=False`` keeps loaded rows readable after the short
    transaction that fetched them has closed.
    """
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(database_url: str = "sqlite:///./opensri.db") -> sessionmaker[Session]:
    """Initialize database engine and session factory."""
    global engine, SessionLocal

    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        # Workers and retry timers share the engine across threads
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )

    SessionLocal = create_session_factory(engine)

    # Create all tables
    Base.metadata.create_all(bind=engine)
    seed_sequences(SessionLocal)
    return SessionLocal


def seed_sequences(session_factory: sessionmaker[Session]) -> None:
    """Create the per-kind document number counters if missing."""
    from opensri.storage.database.models import DocumentKind, DocumentSequence

    with session_factory() as db:
        existing = {row.kind for row in db.query(DocumentSequence).all()}
        for kind in DocumentKind:
            if kind not in existing:
                db.add(DocumentSequence(kind=kind, last_value=0))
        db.commit()


def get_session() -> Session:
    """Return a new session from the configured factory."""
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database sessions."""
    db = get_session()
    try:
        yield db
    finally:
        db.close()
