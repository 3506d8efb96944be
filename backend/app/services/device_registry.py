"""
Registre persistant « un étudiant → un appareil » (onglet StudentDevices).

Règles de validate_student_device (lecture seule) :
1. Onglet absent, pas d'entrée pour l'étudiant ou entrée CLEARED → soumission
   valide, l'appareil soumis est à enregistrer comme appareil de référence.
2. Entrée existante : correspondance exacte ou par préfixe (8 caractères) sur la
   signature matérielle OU sur l'empreinte → valide (entrée à rafraîchir si elle diffère).
3. Sinon, si l'appareil correspond à l'entrée d'un AUTRE étudiant → refus
   DeviceBelongsToAnotherStudent en nommant cet étudiant.
4. Sinon (absence ambiguë) → politique ON_AMBIGUOUS_DEVICE : « allow » accepte
   et journalise le repli permissif, « deny » refuse.

Les exceptions inattendues pendant la validation suivent la même politique.
L'écriture (register_device) n'a lieu qu'une fois la présence acceptée : c'est au
moteur de l'appeler lorsque needs_registration est vrai.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional

from app.schemas.device import CLEARED, RegistryCheck, RegistryEntry
from app.services.ledger_service import AttendanceLedger
from app.services.similarity import tokens_match
from app.stores.a1 import cell_name

logger = logging.getLogger(__name__)

REGISTRY_HEADER = ["StudentID", "Fingerprint", "HardwareSignature", "IPAddress", "RegistrationDate"]
AMBIGUOUS_POLICIES = {"allow", "deny"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceRegistry:

    def __init__(
        self,
        ledger: AttendanceLedger,
        sheet_name: str = "StudentDevices",
        on_ambiguous: str = "allow",
        clock: Callable[[], datetime] = _utcnow,
    ):
        if on_ambiguous not in AMBIGUOUS_POLICIES:
            raise ValueError(f"Politique inconnue : {on_ambiguous} (attendu : allow ou deny)")
        self.ledger = ledger
        self.sheet_name = sheet_name
        self.on_ambiguous = on_ambiguous
        self._clock = clock
        self._sheet_ready = False
        # Sérialise lecture puis ajout : un étudiant n'obtient qu'une seule ligne
        self._register_lock = threading.Lock()

    @property
    def range(self) -> str:
        return f"{self.sheet_name}!A:E"

    def _sheet_available(self) -> bool:
        if not self._sheet_ready:
            self._sheet_ready = self.ledger.sheet_exists(self.sheet_name)
        return self._sheet_ready

    def _ensure_sheet(self) -> None:
        if self._sheet_available():
            return
        self.ledger.add_sheet(self.sheet_name, len(REGISTRY_HEADER))
        self.ledger.write_row(f"{self.sheet_name}!A1:E1", REGISTRY_HEADER)
        self._sheet_ready = True
        logger.info("Onglet %s créé", self.sheet_name)

    def load_entries(self, force_refresh: bool = False) -> List[RegistryEntry]:
        """Entrées de l'onglet (en-tête et lignes sans identifiant ignorés)."""
        rows = self.ledger.read_rows(self.range, force_refresh=force_refresh)
        entries = []
        for index, row in enumerate(rows):
            if index == 0:
                continue
            padded = list(row) + [""] * (len(REGISTRY_HEADER) - len(row))
            student_id = str(padded[0]).strip()
            if not student_id:
                continue
            entries.append(RegistryEntry(
                row_index=index,
                student_id=student_id,
                fingerprint=str(padded[1]),
                hardware_signature=str(padded[2]),
                ip=str(padded[3]),
                registered_at=str(padded[4]),
            ))
        return entries

    @staticmethod
    def find_entry(entries: List[RegistryEntry], student_id: str) -> Optional[RegistryEntry]:
        return next((e for e in entries if e.student_id == student_id), None)

    @staticmethod
    def _matches(entry: RegistryEntry, fingerprint: str, hardware_signature: str) -> bool:
        return tokens_match(entry.hardware_signature, hardware_signature) or tokens_match(entry.fingerprint, fingerprint)

    def register_device(
        self,
        student_id: str,
        fingerprint: str,
        hardware_signature: str,
        ip: Optional[str] = None,
    ) -> None:
        """
        Enregistre (ou écrase) l'appareil de référence de l'étudiant.
        Idempotent : aucune écriture si l'entrée contient déjà exactement ces valeurs.
        """
        ip = ip or "unknown"
        with self._register_lock:
            self._ensure_sheet()
            entry = self.find_entry(self.load_entries(force_refresh=True), student_id)
            values = [fingerprint, hardware_signature, ip, self._clock().isoformat()]

            if entry is None:
                self.ledger.append_row(self.range, [student_id] + values)
                logger.info("Étudiant %s : nouvel appareil enregistré (IP %s)", student_id, ip)
                return

            if (entry.fingerprint, entry.hardware_signature, entry.ip) == (fingerprint, hardware_signature, ip):
                return

            row_range = (
                f"{self.sheet_name}!{cell_name(entry.row_index, 1)}:{cell_name(entry.row_index, 4)}"
            )
            self.ledger.write_row(row_range, values)
            logger.info("Étudiant %s : appareil mis à jour (IP %s)", student_id, ip)

    def validate_student_device(
        self,
        student_id: str,
        fingerprint: str,
        hardware_signature: str,
        ip: Optional[str] = None,
    ) -> RegistryCheck:
        try:
            return self._validate(student_id, fingerprint, hardware_signature, ip)
        except Exception as exc:
            logger.warning(
                "Validation d'appareil impossible pour %s (%s), politique %s appliquée",
                student_id, exc, self.on_ambiguous, exc_info=True,
            )
            return self._ambiguous(student_id, hardware_signature, register=False)

    def _validate(
        self,
        student_id: str,
        fingerprint: str,
        hardware_signature: str,
        ip: Optional[str],
    ) -> RegistryCheck:
        if not self._sheet_available():
            return RegistryCheck(is_valid=True, needs_registration=True)

        entries = self.load_entries()
        own = self.find_entry(entries, student_id)

        if own is None or own.is_cleared:
            return RegistryCheck(is_valid=True, needs_registration=True)

        if self._matches(own, fingerprint, hardware_signature):
            changed = (own.fingerprint, own.hardware_signature, own.ip) != (fingerprint, hardware_signature, ip or "unknown")
            return RegistryCheck(is_valid=True, needs_registration=changed)

        for other in entries:
            if other.student_id == student_id or other.is_cleared:
                continue
            if self._matches(other, fingerprint, hardware_signature):
                logger.info(
                    "Appareil %s... de %s enregistré pour l'étudiant %s",
                    hardware_signature[:8], student_id, other.student_id,
                )
                return RegistryCheck(
                    is_valid=False,
                    error=f"Cet appareil est enregistré pour l'étudiant {other.student_id}.",
                    other_student_id=other.student_id,
                )

        return self._ambiguous(student_id, hardware_signature, register=True)

    def _ambiguous(self, student_id: str, hardware_signature: str, register: bool) -> RegistryCheck:
        if self.on_ambiguous == "deny":
            logger.warning("Étudiant %s : appareil non reconnu, refusé (politique deny)", student_id)
            return RegistryCheck(
                is_valid=False,
                error="Cet appareil n'est pas l'appareil enregistré pour cet étudiant.",
                unauthorized_device=True,
            )

        logger.warning(
            "Étudiant %s : appareil %s... non reconnu, accepté par repli permissif",
            student_id, hardware_signature[:8],
        )
        return RegistryCheck(is_valid=True, permissive=True, needs_registration=register)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _cleared_cells(self, entry: RegistryEntry):
        return [(f"{self.sheet_name}!{cell_name(entry.row_index, col)}", CLEARED) for col in (1, 2, 3)]

    def clear_entry_by_fingerprint(self, fingerprint: str) -> bool:
        """Marque CLEARED les entrées dont l'empreinte correspond. Vrai si au moins une."""
        if not fingerprint or not self._sheet_available():
            return False
        matches = [
            e for e in self.load_entries(force_refresh=True)
            if not e.is_cleared and tokens_match(e.fingerprint, fingerprint)
        ]
        if not matches:
            return False
        cells = [cell for entry in matches for cell in self._cleared_cells(entry)]
        self.ledger.write_cells(cells)
        logger.info(
            "Empreinte %s... retirée du registre (%s)",
            fingerprint[:8], ", ".join(e.student_id for e in matches),
        )
        return True

    def clear_all(self, chunk_size: int, pause: float, sleep: Callable[[float], None]) -> int:
        """Marque CLEARED toutes les entrées, par lots séquentiels. Retourne le nombre d'entrées."""
        if not self._sheet_available():
            logger.info("Onglet %s absent, rien à effacer", self.sheet_name)
            return 0
        entries = [e for e in self.load_entries(force_refresh=True) if not e.is_cleared]
        # Les trois cellules d'une entrée restent dans le même lot
        cells = [cell for entry in entries for cell in self._cleared_cells(entry)]
        self.ledger.write_cells_in_chunks(cells, chunk_size * 3, pause, sleep=sleep)
        logger.info("%d entrées d'appareil effacées", len(entries))
        return len(entries)
