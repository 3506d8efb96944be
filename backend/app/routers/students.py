"""
Router pour le roster des étudiants (lu depuis la feuille de présence).
"""

from fastapi import APIRouter, Depends, Response

from app.dependencies import get_ledger
from app.schemas.student import StudentListResponse
from app.services.ledger_service import AttendanceLedger

router = APIRouter(prefix="/api/students", tags=["Étudiants"])


@router.get("", response_model=StudentListResponse, summary="Lister les étudiants")
def list_students(response: Response, ledger: AttendanceLedger = Depends(get_ledger)):
    """Retourne les étudiants de la feuille principale (lecture mise en cache 60 s)."""
    response.headers["Cache-Control"] = "public, s-maxage=60"
    return StudentListResponse(students=ledger.get_students())
