"""
Score de similarité entre deux identités d'appareil.

Barème (un seul palier par facteur) :

    facteur               exact   préfixe (ancre 8 car.)
    empreinte (DF)          40          20
    signature matérielle    60          30

Score >= SAME_DEVICE_THRESHOLD → même appareil.

Les cellules du registre ne conservent que 8 caractères : pour elles, un jeton
correspondant vaut LEDGER_FINGERPRINT_POINTS / LEDGER_HARDWARE_POINTS et le seuil
est abaissé à LEDGER_SAME_DEVICE_THRESHOLD.
"""

from typing import Optional

from pydantic import BaseModel

PREFIX_ANCHOR_LENGTH = 8

FINGERPRINT_EXACT_POINTS = 40
FINGERPRINT_PREFIX_POINTS = 20
HARDWARE_EXACT_POINTS = 60
HARDWARE_PREFIX_POINTS = 30
SAME_DEVICE_THRESHOLD = 50

LEDGER_FINGERPRINT_POINTS = 40
LEDGER_HARDWARE_POINTS = 30
LEDGER_SAME_DEVICE_THRESHOLD = 40


def prefix_compatible(a: Optional[str], b: Optional[str], anchor: int = PREFIX_ANCHOR_LENGTH) -> bool:
    """Vrai si l'une des chaînes commence par les `anchor` premiers caractères de l'autre."""
    if not a or not b:
        return False
    return a.startswith(b[:anchor]) or b.startswith(a[:anchor])


def tokens_match(stored: Optional[str], live: Optional[str]) -> bool:
    """Égalité exacte ou compatibilité de préfixe dans un sens ou dans l'autre."""
    if not stored or not live:
        return False
    return stored == live or prefix_compatible(stored, live)


class DeviceSimilarity(BaseModel):
    """Détail du score entre un appareil connu et un appareil soumis."""
    fingerprint_points: int
    hardware_points: int
    threshold: int = SAME_DEVICE_THRESHOLD

    @property
    def score(self) -> int:
        return self.fingerprint_points + self.hardware_points

    @property
    def is_same_device(self) -> bool:
        return self.score >= self.threshold

    @classmethod
    def between(
        cls,
        known_fingerprint: str,
        live_fingerprint: str,
        known_hardware: str,
        live_hardware: str,
    ) -> "DeviceSimilarity":
        if known_fingerprint and known_fingerprint == live_fingerprint:
            fp_points = FINGERPRINT_EXACT_POINTS
        elif prefix_compatible(known_fingerprint, live_fingerprint):
            fp_points = FINGERPRINT_PREFIX_POINTS
        else:
            fp_points = 0

        if known_hardware and known_hardware == live_hardware:
            hw_points = HARDWARE_EXACT_POINTS
        elif prefix_compatible(known_hardware, live_hardware):
            hw_points = HARDWARE_PREFIX_POINTS
        else:
            hw_points = 0

        return cls(fingerprint_points=fp_points, hardware_points=hw_points)

    @classmethod
    def against_ledger_tokens(
        cls,
        stored_fingerprint: Optional[str],
        live_fingerprint: str,
        stored_hardware: Optional[str],
        live_hardware: str,
    ) -> "DeviceSimilarity":
        """Score contre les jetons tronqués d'une cellule de présence."""
        fp_points = LEDGER_FINGERPRINT_POINTS if prefix_compatible(stored_fingerprint, live_fingerprint) else 0
        hw_points = LEDGER_HARDWARE_POINTS if prefix_compatible(stored_hardware, live_hardware) else 0
        return cls(
            fingerprint_points=fp_points,
            hardware_points=hw_points,
            threshold=LEDGER_SAME_DEVICE_THRESHOLD,
        )
