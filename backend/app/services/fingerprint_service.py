"""
Contrôle de forme de l'identité d'appareil produite par le client.
Ne vérifie pas l'authenticité : seulement la présence et la longueur minimale.
"""

from typing import Optional

MIN_IDENTITY_LENGTH = 32


def is_valid_fingerprint(fingerprint: Optional[str], hardware_signature: Optional[str]) -> bool:
    """Les deux jetons doivent être des chaînes d'au moins 32 caractères."""
    return all(
        isinstance(token, str) and len(token) >= MIN_IDENTITY_LENGTH
        for token in (fingerprint, hardware_signature)
    )
