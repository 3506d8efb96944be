"""
Tâches de maintenance : retrait des métadonnées d'appareil des cellules de présence.

Une cellule « sale » porte des métadonnées (DF, HW ou DATE) ; le nettoyage la
réécrit en « VAR » simple, la présence est conservée.

Le nettoyage d'une semaine est une tâche interrogeable :
  start_job → process_batch (répété par l'appelant jusqu'à completed) → get_status
États : PENDING → RUNNING → COMPLETED | FAILED. Une tâche de plus de 2 h est expirée.
"""

import logging
import threading
import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from app.schemas.cleanup import CleanupJob, CleanupJobResponse, DeviceDataCleanupReport, JobStatus, WeekClearResult
from app.services import provenance
from app.services.daily_tracker import DailyDeviceTracker
from app.services.device_registry import DeviceRegistry
from app.services.ledger_service import AttendanceLedger
from app.stores.base import LedgerStoreError

logger = logging.getLogger(__name__)


class JobNotFound(ValueError):
    def __init__(self, job_id: str):
        super().__init__(f"Tâche de nettoyage {job_id} introuvable ou expirée.")
        self.job_id = job_id


class CleanupJobManager:

    def __init__(
        self,
        ledger: AttendanceLedger,
        batch_size: int = 50,
        ttl: timedelta = timedelta(hours=2),
        bulk_chunk_size: int = 20,
        bulk_pause: float = 0.5,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.batch_size = batch_size
        self.ttl = ttl
        self.bulk_chunk_size = bulk_chunk_size
        self.bulk_pause = bulk_pause
        self._clock = clock
        self._sleep = sleep
        self._jobs: Dict[str, CleanupJob] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Sélection des cellules
    # ------------------------------------------------------------------

    def _dirty_cells(self, week: int, force_refresh: bool = True) -> List[str]:
        """Plages des cellules de la semaine portant des métadonnées d'appareil."""
        column = self.ledger.week_column_index(week)
        rows = self.ledger.get_main_sheet_data(force_refresh=force_refresh)
        return [
            self.ledger.cell_range(index, week)
            for index, row in enumerate(rows)
            if index > 0 and column < len(row) and provenance.has_device_metadata(row[column])
        ]

    def _all_dirty_cells(self) -> List[Tuple[str, str]]:
        cells = []
        for week in range(1, self.ledger.week_count + 1):
            cells.extend((spec, provenance.PRESENT_MARK) for spec in self._dirty_cells(week, force_refresh=False))
        return cells

    # ------------------------------------------------------------------
    # Tâches interrogeables
    # ------------------------------------------------------------------

    def _expired(self, job: CleanupJob, now: datetime) -> bool:
        return now - job.started_at > self.ttl

    def start_job(self, week: int, job_id: Optional[str] = None) -> CleanupJob:
        """Crée la tâche et compte les cellules à nettoyer. Lève InvalidWeek."""
        total = len(self._dirty_cells(week))
        now = self._clock()
        job = CleanupJob(
            job_id=job_id or uuid.uuid4().hex,
            week=week,
            total_cells=total,
            started_at=now,
            updated_at=now,
        )
        with self._lock:
            self._jobs[job.job_id] = job
        logger.info("Tâche de nettoyage %s créée : semaine %d, %d cellules", job.job_id, week, total)
        return job

    def get_status(self, job_id: str) -> CleanupJob:
        """Lève JobNotFound si la tâche est inconnue ou expirée (son état est alors supprimé)."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None and self._expired(job, self._clock()):
                del self._jobs[job_id]
                logger.info("Tâche de nettoyage %s expirée", job_id)
                job = None
        if job is None:
            raise JobNotFound(job_id)
        return job

    def process_batch(self, job_id: str) -> CleanupJob:
        """
        Nettoie au plus batch_size cellules (relues à chaque appel) et met à jour la progression.
        Une erreur du registre fait passer la tâche en FAILED.
        """
        job = self.get_status(job_id)
        if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
            return job

        job.status = JobStatus.RUNNING
        try:
            dirty = self._dirty_cells(job.week)
            batch = dirty[:self.batch_size]
            self.ledger.write_cells([(spec, provenance.PRESENT_MARK) for spec in batch])
        except LedgerStoreError as exc:
            job.status = JobStatus.FAILED
            job.error = str(exc)
            job.updated_at = self._clock()
            logger.error("Tâche de nettoyage %s en échec : %s", job_id, exc)
            return job

        job.processed_cells += len(batch)
        if not batch or len(dirty) <= len(batch):
            job.status = JobStatus.COMPLETED
        job.updated_at = self._clock()
        logger.info(
            "Tâche %s : %d/%d cellules nettoyées (%d%%)",
            job_id, job.processed_cells, job.total_cells, job.progress,
        )
        return job

    def describe(self, job: CleanupJob) -> CleanupJobResponse:
        return CleanupJobResponse(
            job_id=job.job_id,
            week=job.week,
            status=job.status,
            completed=job.status == JobStatus.COMPLETED,
            total_cells=job.total_cells,
            processed_cells=job.processed_cells,
            progress=job.progress,
            elapsed_seconds=(self._clock() - job.started_at).total_seconds(),
            error=job.error,
        )

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if self._expired(job, now)]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info("%d tâche(s) de nettoyage expirée(s) supprimée(s)", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Nettoyages synchrones
    # ------------------------------------------------------------------

    def clear_week(self, week: int) -> WeekClearResult:
        """Nettoie toute une semaine en un appel, par lots séquentiels. Lève InvalidWeek."""
        cells = [(spec, provenance.PRESENT_MARK) for spec in self._dirty_cells(week)]
        written, _ = self.ledger.write_cells_in_chunks(
            cells, self.bulk_chunk_size, self.bulk_pause, sleep=self._sleep,
        )
        logger.info("Semaine %d : %d cellules nettoyées", week, written)
        return WeekClearResult(week=week, cleared_cells=written)

    def clear_all_device_data(self, tracker: DailyDeviceTracker, registry: DeviceRegistry) -> DeviceDataCleanupReport:
        """
        Vide le suivi journalier, marque CLEARED tout le registre des appareils et
        retire les métadonnées de toutes les semaines. Un lot en échec est journalisé et ignoré.
        """
        memory_cleared = tracker.clear()

        failed = 0
        registry_cleared = 0
        try:
            registry_cleared = registry.clear_all(self.bulk_chunk_size, self.bulk_pause, sleep=self._sleep)
        except LedgerStoreError as exc:
            failed += 1
            logger.error("Effacement du registre des appareils interrompu : %s", exc)

        self.ledger.invalidate(self.ledger.main_sheet)
        written, failed_batches = self.ledger.write_cells_in_chunks(
            self._all_dirty_cells(), self.bulk_chunk_size, self.bulk_pause,
            sleep=self._sleep, stop_on_error=False,
        )
        failed += failed_batches

        logger.info(
            "Données d'appareil effacées : %d en mémoire, %d entrées de registre, %d cellules (%d lots en échec)",
            memory_cleared, registry_cleared, written, failed,
        )
        return DeviceDataCleanupReport(
            memory_records_cleared=memory_cleared,
            registry_entries_cleared=registry_cleared,
            ledger_cells_cleared=written,
            failed_batches=failed,
        )
