"""
Composants partagés par processus (registre, suivi journalier, moteur, tâches),
injectés dans les routers via Depends().

Construits au premier usage : l'import de l'application et les tests
(qui remplacent ces dépendances via app.dependency_overrides) n'ouvrent aucune connexion.
"""

import logging
import threading
from datetime import timedelta
from typing import Callable, Dict, TypeVar

from app.config import settings
from app.services.attendance_service import AttendanceDecisionEngine
from app.services.cleanup_service import CleanupJobManager
from app.services.daily_tracker import DailyDeviceTracker
from app.services.device_registry import DeviceRegistry
from app.services.ledger_service import AttendanceLedger
from app.services.retry import LedgerCallGate
from app.stores import build_ledger_store

logger = logging.getLogger(__name__)

T = TypeVar("T")

_components: Dict[str, object] = {}
_lock = threading.RLock()


def _component(name: str, factory: Callable[[], T]) -> T:
    with _lock:
        if name not in _components:
            _components[name] = factory()
        return _components[name]


def get_ledger() -> AttendanceLedger:
    def build() -> AttendanceLedger:
        gate = LedgerCallGate(
            max_attempts=settings.LEDGER_RETRY_MAX_ATTEMPTS,
            base_delay=settings.LEDGER_RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.LEDGER_RETRY_MAX_DELAY_SECONDS,
            min_interval=settings.LEDGER_MIN_CALL_INTERVAL_SECONDS,
        )
        return AttendanceLedger.from_settings(build_ledger_store(settings), gate, settings)

    return _component("ledger", build)


def get_registry() -> DeviceRegistry:
    return _component(
        "registry",
        lambda: DeviceRegistry(
            get_ledger(),
            sheet_name=settings.DEVICE_REGISTRY_SHEET,
            on_ambiguous=settings.ON_AMBIGUOUS_DEVICE,
        ),
    )


def get_tracker() -> DailyDeviceTracker:
    return _component("tracker", lambda: DailyDeviceTracker(get_ledger()))


def get_engine() -> AttendanceDecisionEngine:
    return _component(
        "engine",
        lambda: AttendanceDecisionEngine.from_settings(get_ledger(), get_registry(), get_tracker(), settings),
    )


def get_job_manager() -> CleanupJobManager:
    return _component(
        "jobs",
        lambda: CleanupJobManager(
            get_ledger(),
            batch_size=settings.CLEANUP_BATCH_SIZE,
            ttl=timedelta(hours=settings.CLEANUP_JOB_TTL_HOURS),
            bulk_chunk_size=settings.BULK_WRITE_CHUNK_SIZE,
            bulk_pause=settings.BULK_WRITE_PAUSE_SECONDS,
        ),
    )


def purge_expired_jobs() -> int:
    """Purge des tâches expirées ; sans effet tant qu'aucune tâche n'a été créée."""
    with _lock:
        manager = _components.get("jobs")
    if manager is None:
        return 0
    return manager.purge_expired()
