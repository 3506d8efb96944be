"""
Router d'administration des appareils : suivi journalier, registre et effacement.
"""

from typing import Dict

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_job_manager, get_registry, get_tracker
from app.schemas.cleanup import DeviceDataCleanupReport
from app.schemas.device import DeviceRecordSnapshot
from app.services.cleanup_service import CleanupJobManager
from app.services.daily_tracker import DailyDeviceTracker
from app.services.device_registry import DeviceRegistry

router = APIRouter(prefix="/api/devices", tags=["Appareils"])


@router.get("", response_model=Dict[str, DeviceRecordSnapshot], summary="Suivi journalier des appareils")
def list_tracked_devices(tracker: DailyDeviceTracker = Depends(get_tracker)):
    """Enregistrements du cache journalier, identifiants masqués à 8 caractères."""
    return tracker.snapshot()


@router.delete("", response_model=DeviceDataCleanupReport, summary="Effacer toutes les données d'appareil")
def clear_device_data(
    tracker: DailyDeviceTracker = Depends(get_tracker),
    registry: DeviceRegistry = Depends(get_registry),
    jobs: CleanupJobManager = Depends(get_job_manager),
):
    """
    Vide le cache journalier, marque CLEARED tout le registre StudentDevices et
    réécrit chaque cellule de présence en « VAR » simple. Les présences sont conservées.
    """
    return jobs.clear_all_device_data(tracker, registry)


@router.delete("/registry/{fingerprint}", summary="Retirer une empreinte du registre")
def clear_registry_entry(fingerprint: str, registry: DeviceRegistry = Depends(get_registry)):
    """L'étudiant concerné pourra enregistrer un nouvel appareil à sa prochaine présence."""
    if not registry.clear_entry_by_fingerprint(fingerprint):
        raise HTTPException(status_code=404, detail="Empreinte introuvable dans le registre.")
    return {"fingerprint": fingerprint, "cleared": True}
