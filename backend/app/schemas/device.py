"""
Schémas Pydantic pour le suivi des appareils (registre par étudiant + suivi journalier).
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

# Sentinelle écrite dans StudentDevices : « pas d'appareil enregistré »
CLEARED = "CLEARED"


class DeviceUsage(BaseModel):
    """Une utilisation d'un appareil pour un étudiant."""
    student_id: str
    timestamp: datetime
    fingerprint: str


class DailyDeviceRecord(BaseModel):
    """
    Enregistrement volatil d'un appareil physique (clé : signature matérielle).
    student_id = étudiant actuellement lié à l'appareil pour la journée de last_used_at.
    """
    student_id: str
    hardware_signature: str
    fingerprints: List[str]
    last_known_ip: str
    last_used_at: datetime
    usage_history: List[DeviceUsage] = []


class TrackResult(BaseModel):
    is_allowed: bool
    blocked_reason: Optional[str] = None
    blocked_student_id: Optional[str] = None


class RegistryEntry(BaseModel):
    """Ligne de la feuille StudentDevices."""
    row_index: int                # Index 0 dans la feuille (en-tête = 0)
    student_id: str
    fingerprint: str
    hardware_signature: str
    ip: str
    registered_at: str

    @property
    def is_cleared(self) -> bool:
        return self.fingerprint == CLEARED or self.hardware_signature == CLEARED


class RegistryCheck(BaseModel):
    """Résultat de validate_student_device."""
    is_valid: bool
    error: Optional[str] = None
    other_student_id: Optional[str] = None
    unauthorized_device: bool = False
    permissive: bool = False      # Validé par repli permissif (journalisé)
    needs_registration: bool = False  # register_device à appeler si la présence est acceptée


class DeviceRecordSnapshot(BaseModel):
    """Vue masquée d'un enregistrement journalier (GET /api/devices)."""
    student_id: str
    hardware_signature: str
    fingerprints: List[str]
    last_known_ip: str
    last_used_at: datetime
    usage_count: int
