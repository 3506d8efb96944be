"""
Router pour le nettoyage des métadonnées d'appareil dans la feuille de présence.
Tâche interrogeable : créer → traiter par lots (répété jusqu'à completed) → consulter.
"""

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_job_manager
from app.schemas.cleanup import CleanupJobCreate, CleanupJobResponse, WeekClearResult
from app.services.cleanup_service import CleanupJobManager

router = APIRouter(prefix="/api", tags=["Maintenance"])


def _http_error(e: ValueError) -> HTTPException:
    status_code = 404 if "introuvable" in str(e) else 400
    return HTTPException(status_code=status_code, detail=str(e))


@router.post("/cleanup-jobs", response_model=CleanupJobResponse, status_code=201,
             summary="Créer une tâche de nettoyage")
def start_cleanup_job(data: CleanupJobCreate, jobs: CleanupJobManager = Depends(get_job_manager)):
    """Compte les cellules de la semaine portant des métadonnées d'appareil."""
    try:
        return jobs.describe(jobs.start_job(data.week, data.job_id))
    except ValueError as e:
        raise _http_error(e)


@router.post("/cleanup-jobs/{job_id}/process", response_model=CleanupJobResponse,
             summary="Traiter un lot de cellules")
def process_cleanup_batch(job_id: str, jobs: CleanupJobManager = Depends(get_job_manager)):
    """Nettoie au plus CLEANUP_BATCH_SIZE cellules ; rappeler tant que completed est faux."""
    try:
        return jobs.describe(jobs.process_batch(job_id))
    except ValueError as e:
        raise _http_error(e)


@router.get("/cleanup-jobs/{job_id}", response_model=CleanupJobResponse,
            summary="État d'une tâche de nettoyage")
def get_cleanup_job(job_id: str, jobs: CleanupJobManager = Depends(get_job_manager)):
    try:
        return jobs.describe(jobs.get_status(job_id))
    except ValueError as e:
        raise _http_error(e)


@router.post("/weeks/{week}/clear", response_model=WeekClearResult,
             summary="Nettoyer une semaine (synchrone)")
def clear_week(week: int, jobs: CleanupJobManager = Depends(get_job_manager)):
    """Variante synchrone par lots séquentiels, pour les petites feuilles."""
    try:
        return jobs.clear_week(week)
    except ValueError as e:
        raise _http_error(e)
