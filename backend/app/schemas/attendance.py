"""
Schémas Pydantic pour la soumission de présence par QR code.
Endpoint : POST /api/attendance
"""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, field_validator

from app.config import settings


class ErrorKind(str, Enum):
    """Taxonomie des refus renvoyés par le moteur de décision."""
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_DEVICE_IDENTITY = "INVALID_DEVICE_IDENTITY"
    QR_EXPIRED = "QR_EXPIRED"
    OUTSIDE_CLASSROOM = "OUTSIDE_CLASSROOM"
    STUDENT_NOT_FOUND = "STUDENT_NOT_FOUND"
    DEVICE_BELONGS_TO_ANOTHER_STUDENT = "DEVICE_BELONGS_TO_ANOTHER_STUDENT"
    DEVICE_ALREADY_USED_TODAY = "DEVICE_ALREADY_USED_TODAY"
    UNAUTHORIZED_DEVICE = "UNAUTHORIZED_DEVICE"        # Politique ON_AMBIGUOUS_DEVICE=deny
    TRANSIENT_STORE_ERROR = "TRANSIENT_STORE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class LatLng(BaseModel):
    lat: float
    lng: float


class QrPayload(BaseModel):
    """Enveloppe JSON encodée dans le QR code affiché par l'enseignant (non signée)."""
    timestamp: int                # Epoch ms de génération
    class_location: LatLng
    valid_until: int              # Epoch ms de fin de validité
    week: int


class QrRequest(BaseModel):
    """Demande de QR code pour une séance (POST /api/qr)."""
    week: int
    class_location: Optional[LatLng] = None   # Défaut : position statique de la salle

    @field_validator("week")
    @classmethod
    def week_in_range(cls, v: int) -> int:
        if not 1 <= v <= settings.WEEK_COUNT:
            raise ValueError(f"Numéro de semaine invalide (1-{settings.WEEK_COUNT}).")
        return v


class AttendanceSubmission(BaseModel):
    """
    Une soumission de présence (une par requête).
    Les champs sont optionnels et la semaine est lue souplement, pour qu'un champ
    absent ou mal formé (semaine « cinq », 5.5) produise un refus
    structuré INVALID_INPUT plutôt qu'une erreur 422.
    """
    student_id: Optional[str] = None
    week: Optional[Union[int, float, str]] = None   # Converti et borné par le moteur
    device_fingerprint: Optional[str] = None
    hardware_signature: Optional[str] = None
    client_ip: Optional[str] = None
    location: Optional[LatLng] = None         # Position de l'étudiant (si non pré-validée)
    qr_payload: Optional[QrPayload] = None    # Contenu du QR scanné (si non pré-validé)
    qr_text: Optional[str] = None             # Texte brut du QR, décodé si qr_payload est absent


class AttendanceDecision(BaseModel):
    """Décision renvoyée au client : acceptée, déjà présente ou refusée avec un motif."""
    accepted: bool
    is_already_attended: bool = False
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    blocked_student_id: Optional[str] = None
    unauthorized_device: bool = False
    permissive_fallback: bool = False         # Acceptée malgré une vérification d'appareil ambiguë
