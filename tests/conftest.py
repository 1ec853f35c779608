"""
Pytest configuration and global fixtures.

This module provides shared fixtures used across all tests: an in-memory
SQLite database, the pipeline wired around fakes for the tax authority and
the mail server, and the reference order #1001.
"""

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from opensri.core.events import GlobalEventBus
from opensri.core.pipeline import FiscalPipeline
from opensri.core.submission import InMemoryRetryScheduler
from opensri.services.pdf import DocumentPDFRenderer
from opensri.storage.database.base import Base
from opensri.storage.database.models import Order
from opensri.storage.documents import SQLAlchemyDocumentStore
from opensri.storage.orders import OrderRepository
from opensri.utils.config import Settings
from opensri.utils.retry import RetryPolicy
from tests.support.builders import make_order
from tests.support.database import make_engine, make_session_factory
from tests.support.fakes import FakeAuthorityClient, FakeEmailSender

# Test constants - use secure test values
TEST_SRI_PASSWORD = "test_sri_password_secure_123"


@pytest.fixture(scope="function")
def db_engine() -> Generator[Engine, None, None]:
    """Create an in-memory SQLite database engine for testing."""
    engine = make_engine()
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()  # Properly close all database connections


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return make_session_factory(db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """A plain session for arranging and inspecting test data."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def store(session_factory) -> SQLAlchemyDocumentStore:
    return SQLAlchemyDocumentStore(session_factory)


@pytest.fixture
def orders(session_factory) -> OrderRepository:
    return OrderRepository(session_factory)


@pytest.fixture
def sample_order(session_factory) -> Order:
    """Paid order #1001: subtotal 100.00, tax 15.00, total 115.00."""
    return make_order(session_factory)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary directories."""
    settings = Settings(
        data_dir=tmp_path / "data",
        archive_dir=tmp_path / "archive",
        database_url=f"sqlite:///{tmp_path / 'data' / 'opensri.db'}",
        sri_api_url="http://sri.test",
        sri_email="api@opensri.test",
        sri_password=TEST_SRI_PASSWORD,
        max_retries=12,
        issuer_name="Test Marketplace S.A.",
        issuer_ruc="1790000000001",
        smtp_host="smtp.test",
        email_from="facturacion@opensri.test",
    )
    settings.ensure_directories()
    return settings


@pytest.fixture
def authority() -> FakeAuthorityClient:
    return FakeAuthorityClient()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def scheduler() -> InMemoryRetryScheduler:
    return InMemoryRetryScheduler()


@pytest.fixture
def event_bus() -> GlobalEventBus:
    """Create a fresh event bus for each test."""
    return GlobalEventBus()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_retries=12, base_delay=300.0)


@pytest.fixture
def archive_dir(tmp_path: Path) -> Path:
    path = tmp_path / "archive"
    path.mkdir(exist_ok=True)
    return path


@pytest.fixture
def pipeline(
    session_factory,
    authority,
    email_sender,
    scheduler,
    event_bus,
    retry_policy,
    archive_dir,
) -> FiscalPipeline:
    """Fully wired pipeline around the fakes."""
    return FiscalPipeline.build(
        session_factory=session_factory,
        client=authority,
        sender=email_sender,
        scheduler=scheduler,
        archive_dir=archive_dir,
        renderer=DocumentPDFRenderer(),
        event_bus=event_bus,
        policy=retry_policy,
        from_address="facturacion@opensri.test",
    )
