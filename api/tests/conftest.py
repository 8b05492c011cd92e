"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import datetime
from decimal import Decimal

# Settings are read at import time
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite://")
os.environ.setdefault("SNAPSHOT_STORAGE_PATH", tempfile.mkdtemp(prefix="flexo-snapshots-"))
os.environ.setdefault("SNAPSHOT_SCHEDULER_ENABLED", "false")
os.environ.setdefault("NOTIFIER_BACKEND", "memory")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flexo_api.api.deps import get_archive_storage, get_db, get_program_notifier
from flexo_api.database import Base
from flexo_api.main import app
from flexo_api.notifications.base import ProgramNotifier
from flexo_api.notifications.broadcast_hub import BroadcastHub
from flexo_api.schemas.machine_program import MachineProgramCreate
from flexo_api.services.program_service import MachineProgramService
from flexo_api.services.snapshot_service import SnapshotService
from flexo_api.storage.local_driver import LocalStorageDriver


class RecordingNotifier(ProgramNotifier):
    """Notifier that keeps every published event."""

    def __init__(self):
        self.events = []

    def publish(self, event_type, payload):
        self.events.append((event_type, payload))

    def types(self):
        return [event_type for event_type, _ in self.events]


@pytest.fixture
def client():
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def test_engine():
    """Create a fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db(test_engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def hub():
    return BroadcastHub(max_queue_size=10)


@pytest.fixture
def storage(tmp_path):
    return LocalStorageDriver({"base_path": str(tmp_path / "snapshots")})


@pytest.fixture
def program_service(test_db, notifier):
    return MachineProgramService(test_db, notifier)


@pytest.fixture
def snapshot_service(test_db, storage):
    return SnapshotService(test_db, storage)


@pytest.fixture
def make_program(program_service):
    """Factory creating programs with sensible defaults and unique work orders."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "machine_number": 11,
            "article_code": f"ART-{counter['n']:03d}",
            "work_order": f"OT-{1000 + counter['n']}",
            "client": "Acme Foods",
            "colors": ["Cyan", "Magenta", "Black"],
            "weight_kg": Decimal("250.50"),
            "substrate": "BOPP 30",
            "operator_name": "Line operator",
        }
        data.update(overrides)
        actor_id = data.pop("actor_id", 7)
        return program_service.create(MachineProgramCreate(**data), actor_id=actor_id)

    return _make


@pytest.fixture
def client_with_db(test_db, hub, storage):
    """Create a test client with database, notifier and storage overrides."""

    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_program_notifier] = lambda: hub
    app.dependency_overrides[get_archive_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def program_payload():
    return {
        "machine_number": 12,
        "article_code": "ART-900",
        "work_order": "OT-1",
        "client": "Acme Foods",
        "colors": ["Cyan", "Black"],
        "weight_kg": "120.00",
        "start_time": datetime(2026, 3, 2, 8, 30).isoformat(),
    }
