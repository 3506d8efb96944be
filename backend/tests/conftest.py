"""
Configuration partagée pour tous les tests.
Registre en mémoire (MemoryLedgerStore) et backoff sans attente réelle :
aucune connexion à PostgreSQL ni à Google Sheets.
"""

import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_engine, get_job_manager, get_ledger, get_registry, get_tracker
from app.main import app
from app.services.attendance_service import AttendanceDecisionEngine
from app.services.cleanup_service import CleanupJobManager
from app.services.daily_tracker import DailyDeviceTracker
from app.services.device_registry import DeviceRegistry
from app.services.ledger_service import AttendanceLedger
from app.services.retry import LedgerCallGate
from app.stores.memory import MemoryLedgerStore

HEADER = ["No", "StudentID", "Name"] + [f"W{week}" for week in range(1, 17)]

ROSTER = [
    HEADER,
    ["1", "150210001", "Ayşe Yılmaz"],
    ["2", "150210002", "Mehmet Demir"],
    ["3", "150210003", "Zeynep Kaya"],
]


@pytest.fixture
def store():
    return MemoryLedgerStore({"Sheet1": [list(row) for row in ROSTER]})


@pytest.fixture
def gate():
    return LedgerCallGate(min_interval=0, sleep=lambda seconds: None)


@pytest.fixture
def ledger(store, gate):
    return AttendanceLedger(store, gate)


@pytest.fixture
def registry(ledger):
    return DeviceRegistry(ledger)


@pytest.fixture
def tracker(ledger):
    return DailyDeviceTracker(ledger)


@pytest.fixture
def engine(ledger, registry, tracker):
    return AttendanceDecisionEngine(ledger, registry, tracker, max_distance_km=0.1)


@pytest.fixture
def jobs(ledger):
    return CleanupJobManager(ledger, batch_size=2, bulk_chunk_size=2, bulk_pause=0, sleep=lambda seconds: None)


@pytest.fixture
def client(ledger, registry, tracker, engine, jobs):
    """Client HTTP de test branché sur le registre en mémoire."""
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_tracker] = lambda: tracker
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_job_manager] = lambda: jobs
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
