"""
Router pour la séance de cours : QR code à afficher et position de la salle.
"""

from datetime import datetime

from fastapi import APIRouter
from fastapi.responses import Response

from app.config import settings
from app.schemas.attendance import LatLng, QrRequest
from app.services import qr_service

router = APIRouter(prefix="/api", tags=["Séance"])


def _classroom() -> LatLng:
    return LatLng(lat=settings.CLASS_LAT, lng=settings.CLASS_LNG)


@router.post("/qr", summary="Générer le QR code de la séance")
def generate_session_qr(data: QrRequest):
    """
    Retourne l'image PNG du QR code, valable QR_TTL_SECONDS.
    Sans position fournie, la position statique de la salle est utilisée.
    """
    payload = qr_service.build_qr_payload(
        data.week,
        data.class_location or _classroom(),
        datetime.now(),
        settings.QR_TTL_SECONDS,
    )
    return Response(
        content=qr_service.generate_qr_image(payload),
        media_type="image/png",
        headers={"X-QR-Valid-Until": str(payload.valid_until)},
    )


@router.get("/location", response_model=LatLng, summary="Position de la salle")
def get_class_location():
    return _classroom()
