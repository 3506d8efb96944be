"""
Format de provenance embarqué dans une cellule de présence.

Grammaire :
    cellule     := "" | "VAR" provenance*
    provenance  := " (" clé ":" valeur ")"
    clé         := "DF" | "HW" | "IP" | "DATE"
    valeur      := [^)]*

DF et HW sont tronqués à 8 caractères à l'écriture ; DATE est un epoch en ms.
Les jetons inconnus sont ignorés au décodage.
"""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

PRESENT_MARK = "VAR"
TOKEN_LENGTH = 8
METADATA_MARKERS = ("(DF:", "(HW:", "(DATE:")

_TOKEN_REGEX = re.compile(r"\((DF|HW|IP|DATE):([^)]*)\)")


class CellProvenance(BaseModel):
    """Métadonnées d'une présence : appareil tronqué, IP et horodatage."""
    fingerprint: Optional[str] = None
    hardware_signature: Optional[str] = None
    ip: Optional[str] = None
    recorded_at: Optional[datetime] = None

    @classmethod
    def from_submission(
        cls,
        fingerprint: str,
        hardware_signature: str,
        ip: Optional[str],
        recorded_at: datetime,
    ) -> "CellProvenance":
        return cls(
            fingerprint=fingerprint[:TOKEN_LENGTH],
            hardware_signature=hardware_signature[:TOKEN_LENGTH],
            ip=ip or None,
            recorded_at=recorded_at,
        )

    def encode(self) -> str:
        parts = [PRESENT_MARK]
        if self.fingerprint:
            parts.append(f"(DF:{self.fingerprint})")
        if self.hardware_signature:
            parts.append(f"(HW:{self.hardware_signature})")
        if self.ip:
            parts.append(f"(IP:{self.ip})")
        if self.recorded_at is not None:
            parts.append(f"(DATE:{int(self.recorded_at.timestamp() * 1000)})")
        return " ".join(parts)


def decode(cell: Optional[str]) -> Optional[CellProvenance]:
    """Retourne la provenance d'une cellule marquée, ou None si la cellule n'est pas marquée."""
    if not is_marked(cell):
        return None

    tokens = {key: value for key, value in _TOKEN_REGEX.findall(cell)}
    recorded_at = None
    if tokens.get("DATE", "").isdigit():
        recorded_at = datetime.fromtimestamp(int(tokens["DATE"]) / 1000)

    return CellProvenance(
        fingerprint=tokens.get("DF") or None,
        hardware_signature=tokens.get("HW") or None,
        ip=tokens.get("IP") or None,
        recorded_at=recorded_at,
    )


def is_marked(cell: Optional[str]) -> bool:
    """Vrai si la cellule contient « VAR », quel que soit le suffixe de provenance."""
    return isinstance(cell, str) and PRESENT_MARK in cell


def has_device_metadata(cell: Optional[str]) -> bool:
    """Vrai si la cellule porte des métadonnées d'appareil à nettoyer."""
    return isinstance(cell, str) and any(marker in cell for marker in METADATA_MARKERS)
