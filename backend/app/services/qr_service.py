"""
Enveloppe JSON du QR code affiché par l'enseignant : {timestamp, class_location, valid_until, week}.
Le contenu n'est pas signé ; seuls la fenêtre de validité et la position sont exploitées.
"""

import io
import json
from datetime import datetime

import qrcode
from pydantic import ValidationError

from app.schemas.attendance import LatLng, QrPayload


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def build_qr_payload(week: int, class_location: LatLng, now: datetime, ttl_seconds: int) -> QrPayload:
    """Payload valide ttl_seconds à partir de now."""
    timestamp = to_epoch_ms(now)
    return QrPayload(
        timestamp=timestamp,
        class_location=class_location,
        valid_until=timestamp + ttl_seconds * 1000,
        week=week,
    )


def decode_qr_payload(text: str) -> QrPayload:
    """Lève ValueError si le texte scanné n'est pas une enveloppe valide."""
    try:
        return QrPayload.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValueError(f"QR code illisible : {exc}") from exc


def is_qr_valid(payload: QrPayload, now: datetime) -> bool:
    return payload.valid_until >= to_epoch_ms(now)


def generate_qr_image(payload: QrPayload) -> bytes:
    """Génère une image PNG du QR code encodant l'enveloppe JSON."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(payload.model_dump_json())
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
