"""
Tests unitaires pour l'enveloppe JSON du QR code de séance.
"""

from datetime import datetime, timedelta

import pytest

from app.schemas.attendance import LatLng
from app.services.qr_service import build_qr_payload, decode_qr_payload, generate_qr_image, is_qr_valid

CLASSROOM = LatLng(lat=41.015137, lng=28.979530)
NOW = datetime(2026, 3, 10, 9, 0)


def test_build_payload_ttl():
    payload = build_qr_payload(5, CLASSROOM, NOW, ttl_seconds=300)
    assert payload.valid_until - payload.timestamp == 300_000
    assert payload.week == 5


def test_validite():
    payload = build_qr_payload(5, CLASSROOM, NOW, ttl_seconds=300)
    assert is_qr_valid(payload, NOW + timedelta(minutes=5))
    assert not is_qr_valid(payload, NOW + timedelta(minutes=5, seconds=1))


def test_decode_payload_scanne():
    text = '{"timestamp": 1, "class_location": {"lat": 41.0, "lng": 29.0}, "valid_until": 2, "week": 3}'
    payload = decode_qr_payload(text)
    assert payload.class_location.lat == 41.0
    assert payload.week == 3


@pytest.mark.parametrize("text", ["pas du json", '{"week": 3}'])
def test_decode_payload_illisible(text):
    with pytest.raises(ValueError):
        decode_qr_payload(text)


def test_generate_qr_image_png():
    image = generate_qr_image(build_qr_payload(5, CLASSROOM, NOW, ttl_seconds=300))
    assert image[:8] == b"\x89PNG\r\n\x1a\n"
