"""
Distance orthodromique (formule de haversine) entre la position de l'étudiant et la salle.
"""

import math

from app.schemas.attendance import LatLng

EARTH_RADIUS_KM = 6371.0


def distance_km(a: LatLng, b: LatLng) -> float:
    """Distance en km entre deux points. Les NaN se propagent, aucune exception."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_within_distance(student: LatLng, classroom: LatLng, max_distance_km: float) -> bool:
    """Vrai si l'étudiant est à max_distance_km ou moins de la salle (NaN → faux)."""
    return distance_km(student, classroom) <= max_distance_km
