"""
Schémas Pydantic pour les tâches de maintenance (nettoyage des métadonnées d'appareil).
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator

from app.config import settings


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CleanupJob(BaseModel):
    """État interrogeable d'une tâche de nettoyage d'une semaine."""
    job_id: str
    week: int
    status: JobStatus = JobStatus.PENDING
    total_cells: int = 0
    processed_cells: int = 0
    started_at: datetime
    updated_at: datetime
    error: Optional[str] = None

    @property
    def progress(self) -> int:
        if self.total_cells <= 0:
            return 100 if self.status == JobStatus.COMPLETED else 0
        return min(round(self.processed_cells / self.total_cells * 100), 100)


class CleanupJobCreate(BaseModel):
    week: int
    job_id: Optional[str] = None

    @field_validator("week")
    @classmethod
    def week_in_range(cls, v: int) -> int:
        if not 1 <= v <= settings.WEEK_COUNT:
            raise ValueError(f"Numéro de semaine invalide (1-{settings.WEEK_COUNT}).")
        return v


class CleanupJobResponse(BaseModel):
    job_id: str
    week: int
    status: JobStatus
    completed: bool
    total_cells: int
    processed_cells: int
    progress: int
    elapsed_seconds: float
    error: Optional[str] = None


class WeekClearResult(BaseModel):
    week: int
    cleared_cells: int


class DeviceDataCleanupReport(BaseModel):
    """Rapport de DELETE /api/devices."""
    memory_records_cleared: int
    registry_entries_cleared: int
    ledger_cells_cleared: int
    failed_batches: int
