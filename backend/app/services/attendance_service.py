"""
Moteur de décision des présences par QR code.

Ordre des contrôles (le premier échec l'emporte) :
  1. Validation structurelle (étudiant, semaine ; QR et position s'ils sont fournis)
  2. Bonne forme de l'identité d'appareil
  3. Registre persistant étudiant → appareil, sans modification
  4. Suivi journalier (registre durable puis cache local), sans modification
  5. Ligne de l'étudiant et colonne de la semaine
  6. Cellule déjà « VAR » → succès idempotent, aucune écriture de cellule
  7. Sinon liaison de l'appareil pour la journée puis écriture de la cellule

Le registre et le suivi journalier ne sont modifiés que sur les chemins 6 et 7 :
une soumission refusée ne laisse aucune trace.

Les refus sont renvoyés sous forme d'AttendanceDecision, jamais d'exception.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Union

from app.config import Settings, settings
from app.schemas.attendance import AttendanceDecision, AttendanceSubmission, ErrorKind, LatLng
from app.schemas.device import RegistryCheck, TrackResult
from app.services import geo_service, qr_service
from app.services.daily_tracker import DailyDeviceTracker
from app.services.device_registry import DeviceRegistry
from app.services.fingerprint_service import MIN_IDENTITY_LENGTH, is_valid_fingerprint
from app.services.ledger_service import AttendanceLedger, InvalidWeek, StudentNotFound
from app.services.provenance import CellProvenance
from app.stores.base import LedgerStoreError, TransientStoreError

logger = logging.getLogger(__name__)


def _reject(kind: ErrorKind, message: str, **extra) -> AttendanceDecision:
    return AttendanceDecision(accepted=False, error_kind=kind, error=message, **extra)


def _parse_week(value: Union[int, float, str, None]) -> Optional[int]:
    """Semaine entière, ou None si la valeur ne désigne pas un entier (« cinq », 5.5)."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(value.strip())
    except ValueError:
        return None


class AttendanceDecisionEngine:

    def __init__(
        self,
        ledger: AttendanceLedger,
        registry: DeviceRegistry,
        tracker: DailyDeviceTracker,
        max_distance_km: float = 0.1,
        classroom: Optional[LatLng] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ledger = ledger
        self.registry = registry
        self.tracker = tracker
        self.max_distance_km = max_distance_km
        self.classroom = classroom
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        ledger: AttendanceLedger,
        registry: DeviceRegistry,
        tracker: DailyDeviceTracker,
        config: Settings = settings,
    ) -> "AttendanceDecisionEngine":
        return cls(
            ledger,
            registry,
            tracker,
            max_distance_km=config.MAX_DISTANCE_KM,
            classroom=LatLng(lat=config.CLASS_LAT, lng=config.CLASS_LNG),
        )

    def submit(self, submission: AttendanceSubmission) -> AttendanceDecision:
        try:
            return self._submit(submission)
        except TransientStoreError as exc:
            logger.error("Registre indisponible pour %s : %s", submission.student_id, exc)
            return _reject(
                ErrorKind.TRANSIENT_STORE_ERROR,
                "Le registre de présence est momentanément indisponible. Réessayez plus tard.",
            )

    # ------------------------------------------------------------------
    # Étapes
    # ------------------------------------------------------------------

    def _validate_structure(self, submission: AttendanceSubmission, week: Optional[int]) -> Optional[AttendanceDecision]:
        if not submission.student_id or not submission.student_id.strip():
            return _reject(ErrorKind.INVALID_INPUT, "Numéro d'étudiant manquant.")
        if submission.week is None:
            return _reject(ErrorKind.INVALID_INPUT, "Numéro de semaine manquant.")
        if week is None or not 1 <= week <= self.ledger.week_count:
            return _reject(
                ErrorKind.INVALID_INPUT,
                f"Numéro de semaine invalide : {submission.week} (1-{self.ledger.week_count}).",
            )
        if not submission.device_fingerprint or not submission.hardware_signature:
            return _reject(ErrorKind.INVALID_INPUT, "Identité de l'appareil manquante.")

        qr_payload = submission.qr_payload
        if qr_payload is None and submission.qr_text:
            try:
                qr_payload = qr_service.decode_qr_payload(submission.qr_text)
            except ValueError as exc:
                logger.info("Étudiant %s : %s", submission.student_id, exc)
                return _reject(ErrorKind.INVALID_INPUT, "QR code illisible. Scannez à nouveau.")

        now = self._clock()
        classroom = self.classroom
        if qr_payload is not None:
            if not qr_service.is_qr_valid(qr_payload, now):
                return _reject(ErrorKind.QR_EXPIRED, "Le QR code a expiré. Scannez le nouveau code.")
            if qr_payload.week != week:
                return _reject(ErrorKind.INVALID_INPUT, "La semaine ne correspond pas au QR code scanné.")
            classroom = qr_payload.class_location

        if submission.location is not None and classroom is not None:
            if not geo_service.is_within_distance(submission.location, classroom, self.max_distance_km):
                distance = geo_service.distance_km(submission.location, classroom)
                logger.info(
                    "Étudiant %s hors de la salle (%.3f km > %.3f km)",
                    submission.student_id, distance, self.max_distance_km,
                )
                return _reject(
                    ErrorKind.OUTSIDE_CLASSROOM,
                    f"Vous êtes à {distance:.2f} km de la salle (maximum {self.max_distance_km} km).",
                )
        return None

    def _track_rejection(self, result: TrackResult) -> AttendanceDecision:
        return _reject(
            ErrorKind.DEVICE_ALREADY_USED_TODAY,
            result.blocked_reason or "Cet appareil a déjà été utilisé aujourd'hui pour un autre étudiant.",
            blocked_student_id=result.blocked_student_id,
        )

    def _register_device(
        self,
        registry_check: RegistryCheck,
        student_id: str,
        fingerprint: str,
        hardware_signature: str,
        ip: str,
    ) -> None:
        """Enregistrement différé de l'appareil de référence, une fois la présence acceptée."""
        if not registry_check.needs_registration:
            return
        try:
            self.registry.register_device(student_id, fingerprint, hardware_signature, ip)
        except LedgerStoreError as exc:
            # La présence reste acquise ; l'appareil sera enregistré à la prochaine soumission
            logger.warning("Étudiant %s : enregistrement de l'appareil impossible (%s)", student_id, exc)

    def _submit(self, submission: AttendanceSubmission) -> AttendanceDecision:
        week = _parse_week(submission.week)

        # 1. Structure
        rejection = self._validate_structure(submission, week)
        if rejection is not None:
            return rejection

        student_id = submission.student_id.strip()
        fingerprint = submission.device_fingerprint
        hardware_signature = submission.hardware_signature
        ip = submission.client_ip or "unknown"

        # 2. Identité d'appareil
        if not is_valid_fingerprint(fingerprint, hardware_signature):
            return _reject(
                ErrorKind.INVALID_DEVICE_IDENTITY,
                f"Identité d'appareil invalide (minimum {MIN_IDENTITY_LENGTH} caractères).",
            )

        # 3. Registre étudiant → appareil
        registry_check = self.registry.validate_student_device(student_id, fingerprint, hardware_signature, ip)
        if not registry_check.is_valid:
            if registry_check.unauthorized_device:
                return _reject(
                    ErrorKind.UNAUTHORIZED_DEVICE,
                    registry_check.error or "Appareil non autorisé.",
                    unauthorized_device=True,
                )
            return _reject(
                ErrorKind.DEVICE_BELONGS_TO_ANOTHER_STUDENT,
                registry_check.error or "Cet appareil est enregistré pour un autre étudiant.",
                blocked_student_id=registry_check.other_student_id,
            )

        # 4. Un appareil = un étudiant par jour
        access = self.tracker.validate_device_access(fingerprint, student_id, ip, hardware_signature)
        if not access.is_allowed:
            return self._track_rejection(access)

        # 5. Ligne et colonne
        rows = self.ledger.get_main_sheet_data()
        try:
            row_index = self.ledger.find_student_row(rows, student_id)
        except StudentNotFound as exc:
            # Le cache peut précéder l'ajout de l'étudiant à la feuille
            rows = self.ledger.get_main_sheet_data(force_refresh=True)
            try:
                row_index = self.ledger.find_student_row(rows, student_id)
            except StudentNotFound:
                return _reject(ErrorKind.STUDENT_NOT_FOUND, str(exc))
        try:
            cell = self.ledger.cell_range(row_index, week)
        except InvalidWeek as exc:
            return _reject(ErrorKind.INVALID_INPUT, str(exc))

        # 6. Déjà présent : succès idempotent
        if self.ledger.is_already_marked(self.ledger.read_cell(cell)):
            tracked = self.tracker.track_device(fingerprint, student_id, ip, hardware_signature)
            if not tracked.is_allowed:
                return self._track_rejection(tracked)
            self._register_device(registry_check, student_id, fingerprint, hardware_signature, ip)
            logger.info("Étudiant %s déjà présent en semaine %d", student_id, week)
            return AttendanceDecision(
                accepted=True,
                is_already_attended=True,
                permissive_fallback=registry_check.permissive,
            )

        # 7. Liaison de l'appareil puis écriture
        tracked = self.tracker.track_device(fingerprint, student_id, ip, hardware_signature)
        if not tracked.is_allowed:
            return self._track_rejection(tracked)

        value = CellProvenance.from_submission(fingerprint, hardware_signature, ip, self._clock()).encode()
        self.ledger.write_cell(cell, value)
        self._register_device(registry_check, student_id, fingerprint, hardware_signature, ip)
        logger.info(
            "Présence enregistrée : étudiant %s, semaine %d, appareil %s... (%s)",
            student_id, week, hardware_signature[:8], cell,
        )
        return AttendanceDecision(accepted=True, permissive_fallback=registry_check.permissive)
