"""Shared pytest fixtures for hostfleet tests."""
from __future__ import annotations

import json
from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hostfleet import models
from hostfleet.providers.mock import MockStatusClient
from hostfleet.providers.registry import ProviderRegistry


@pytest.fixture(scope="function")
def test_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def test_db(test_engine):
    """Create a database session for testing."""
    TestingSessionLocal = sessionmaker(
        bind=test_engine, autoflush=False, autocommit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def session_factory(test_db: Session):
    """Session factory handing out the test session, like db.get_session."""
    @contextmanager
    def _factory():
        yield test_db

    return _factory


@pytest.fixture(scope="function")
def mock_client() -> MockStatusClient:
    return MockStatusClient()


@pytest.fixture(scope="function")
def registry(mock_client: MockStatusClient) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register_client(mock_client)
    return registry


@pytest.fixture(autouse=True)
def _no_retry_sleep(monkeypatch):
    """Keep provider retry backoff from slowing tests down."""
    from hostfleet.config import settings

    monkeypatch.setattr(settings, "provider_retry_backoff_base", 0.0)
    monkeypatch.setattr(settings, "provider_retry_backoff_max", 0.0)


def _make_distro(test_db: Session, distro_id: str, provider: str = "mock", region: str | None = None) -> models.Distro:
    distro = models.Distro(id=distro_id, provider=provider)
    if region is not None:
        distro.provider_settings = json.dumps([{"region": region}])
    test_db.add(distro)
    test_db.commit()
    return distro


def _make_host(
    test_db: Session,
    host_id: str,
    *,
    provider: str = "mock",
    status: str | None = None,
    distro: models.Distro | None = None,
) -> models.Host:
    host = models.Host(id=host_id, provider=provider)
    if status is not None:
        host.status = status
    if distro is not None:
        host.distro_id = distro.id
    test_db.add(host)
    test_db.commit()
    return host


def _host_status(test_db: Session, host_id: str) -> str:
    test_db.expire_all()
    return test_db.get(models.Host, host_id).status


@pytest.fixture(scope="function")
def make_distro(test_db: Session):
    """Factory fixture: make_distro("d1", region="us-east-1")."""
    return lambda distro_id, **kwargs: _make_distro(test_db, distro_id, **kwargs)


@pytest.fixture(scope="function")
def make_host(test_db: Session):
    """Factory fixture: make_host("h1", status="starting", distro=d)."""
    return lambda host_id, **kwargs: _make_host(test_db, host_id, **kwargs)


@pytest.fixture(scope="function")
def host_status(test_db: Session):
    """Read a host's committed status."""
    return lambda host_id: _host_status(test_db, host_id)
