"""
Suivi journalier des appareils : un appareil physique ne peut valider la présence
que d'un seul étudiant par jour calendaire (minuit local du serveur).

Deux contrôles indépendants, tous deux doivent passer :
- le registre durable (cellules « VAR (DF:..) (HW:..) (IP:..) (DATE:..) » du jour
  chez les AUTRES étudiants), seuil abaissé car seuls 8 caractères y sont conservés ;
- le cache local (volatil, perdu au redémarrage) indexé par signature matérielle.

Dans les deux cas, une IP différente signifie un appareil différent, quelle que
soit la similarité des empreintes.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from app.schemas.device import DailyDeviceRecord, DeviceRecordSnapshot, DeviceUsage, TrackResult
from app.services import provenance
from app.services.ledger_service import AttendanceLedger
from app.services.similarity import DeviceSimilarity
from app.stores.base import LedgerStoreError

logger = logging.getLogger(__name__)


def day_window(now: datetime) -> Tuple[datetime, datetime]:
    """[aujourd'hui 00:00, demain 00:00) en heure locale."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


class DailyDeviceTracker:
    """
    Instance unique par processus, injectée dans le moteur de décision.
    Les tests créent une instance neuve pour s'isoler.
    """

    def __init__(
        self,
        ledger: Optional[AttendanceLedger] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ledger = ledger
        self._clock = clock
        self._records: Dict[str, DailyDeviceRecord] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cache local
    # ------------------------------------------------------------------

    def _find_blocking_record(
        self,
        fingerprint: str,
        student_id: str,
        ip: str,
        hardware_signature: str,
        now: datetime,
    ) -> Optional[DailyDeviceRecord]:
        start, end = day_window(now)
        for record in self._records.values():
            if not start <= record.last_used_at < end:
                continue
            if record.last_known_ip != ip:
                continue
            similarity = max(
                (
                    DeviceSimilarity.between(known_fp, fingerprint, record.hardware_signature, hardware_signature)
                    for known_fp in record.fingerprints
                ),
                key=lambda s: s.score,
            )
            if similarity.is_same_device and record.student_id != student_id:
                return record
        return None

    @staticmethod
    def _blocked(student_id: str) -> TrackResult:
        return TrackResult(
            is_allowed=False,
            blocked_reason=f"Cet appareil a déjà été utilisé aujourd'hui pour l'étudiant {student_id}.",
            blocked_student_id=student_id,
        )

    def check_device(self, fingerprint: str, student_id: str, ip: str, hardware_signature: str) -> TrackResult:
        """Contrôle le cache local sans le modifier."""
        with self._lock:
            blocking = self._find_blocking_record(fingerprint, student_id, ip, hardware_signature, self._clock())
        if blocking is not None:
            return self._blocked(blocking.student_id)
        return TrackResult(is_allowed=True)

    def track_device(self, fingerprint: str, student_id: str, ip: str, hardware_signature: str) -> TrackResult:
        """
        Contrôle puis enregistre l'utilisation de façon atomique.

        Upsert par signature matérielle (ou, à défaut, par appartenance de
        l'empreinte) : ajoute l'empreinte si nouvelle, empile l'usage, rafraîchit
        date et IP. Un enregistrement d'un jour précédent est réattribué à l'étudiant.
        """
        with self._lock:
            now = self._clock()
            blocking = self._find_blocking_record(fingerprint, student_id, ip, hardware_signature, now)
            if blocking is not None:
                logger.info(
                    "Appareil %s... bloqué pour %s : déjà utilisé par %s",
                    hardware_signature[:8], student_id, blocking.student_id,
                )
                return self._blocked(blocking.student_id)

            usage = DeviceUsage(student_id=student_id, timestamp=now, fingerprint=fingerprint)
            record = self._records.get(hardware_signature) or next(
                (r for r in self._records.values() if fingerprint in r.fingerprints), None
            )

            if record is None:
                self._records[hardware_signature] = DailyDeviceRecord(
                    student_id=student_id,
                    hardware_signature=hardware_signature,
                    fingerprints=[fingerprint],
                    last_known_ip=ip,
                    last_used_at=now,
                    usage_history=[usage],
                )
                return TrackResult(is_allowed=True)

            start, _ = day_window(now)
            if record.last_used_at < start:
                record.student_id = student_id
            record.last_used_at = now
            record.last_known_ip = ip
            if fingerprint not in record.fingerprints:
                record.fingerprints.append(fingerprint)
            record.usage_history.append(usage)
            if record.hardware_signature != hardware_signature:
                # Une seule clé par enregistrement : la signature la plus récente
                self._records.pop(record.hardware_signature, None)
                record.hardware_signature = hardware_signature
            self._records[hardware_signature] = record
            return TrackResult(is_allowed=True)

    # ------------------------------------------------------------------
    # Registre durable
    # ------------------------------------------------------------------

    def check_ledger(self, fingerprint: str, student_id: str, ip: str, hardware_signature: str) -> TrackResult:
        """
        Parcourt les cellules du jour des autres étudiants dans le registre.
        Une lecture impossible est journalisée et traitée comme un passage.
        """
        if self.ledger is None or not ip:
            return TrackResult(is_allowed=True)

        try:
            rows = self.ledger.get_main_sheet_data()
        except LedgerStoreError as exc:
            logger.warning("Contrôle du registre impossible (%s), passage autorisé", exc)
            return TrackResult(is_allowed=True)

        start, end = day_window(self._clock())
        first_col = self.ledger.first_week_column
        id_col = self.ledger.student_id_column

        for row in rows[1:]:
            row_student = str(row[id_col]).strip() if id_col < len(row) else ""
            if not row_student or row_student == student_id:
                continue
            for cell in row[first_col:]:
                cell_provenance = provenance.decode(cell)
                if cell_provenance is None or cell_provenance.recorded_at is None:
                    continue
                if not start <= cell_provenance.recorded_at < end:
                    continue
                if cell_provenance.ip is None or cell_provenance.ip != ip:
                    continue
                similarity = DeviceSimilarity.against_ledger_tokens(
                    cell_provenance.fingerprint, fingerprint,
                    cell_provenance.hardware_signature, hardware_signature,
                )
                if similarity.is_same_device:
                    logger.info(
                        "Registre : appareil %s... déjà utilisé aujourd'hui par %s",
                        hardware_signature[:8], row_student,
                    )
                    return self._blocked(row_student)

        return TrackResult(is_allowed=True)

    def validate_device_access(self, fingerprint: str, student_id: str, ip: str, hardware_signature: str) -> TrackResult:
        """Registre durable puis cache local ; le premier refus l'emporte. Ne modifie rien."""
        ledger_check = self.check_ledger(fingerprint, student_id, ip, hardware_signature)
        if not ledger_check.is_allowed:
            return ledger_check
        return self.check_device(fingerprint, student_id, ip, hardware_signature)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, DeviceRecordSnapshot]:
        """Vue des enregistrements avec identifiants masqués à 8 caractères."""
        with self._lock:
            return {
                f"{key[:8]}...": DeviceRecordSnapshot(
                    student_id=record.student_id,
                    hardware_signature=f"{record.hardware_signature[:8]}...",
                    fingerprints=[f"{fp[:8]}..." for fp in record.fingerprints],
                    last_known_ip=record.last_known_ip,
                    last_used_at=record.last_used_at,
                    usage_count=len(record.usage_history),
                )
                for key, record in self._records.items()
            }

    def records(self) -> List[DailyDeviceRecord]:
        with self._lock:
            return [record.model_copy(deep=True) for record in self._records.values()]

    def load_record(self, record: DailyDeviceRecord) -> None:
        """Injecte un enregistrement (reprise d'état, tests de bascule de jour)."""
        with self._lock:
            self._records[record.hardware_signature] = record

    def clear(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
        logger.info("Cache journalier des appareils vidé (%d enregistrements)", count)
        return count
