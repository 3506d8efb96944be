"""
Router pour la soumission de présence par QR code.
POST /api/attendance
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.dependencies import get_engine
from app.schemas.attendance import AttendanceDecision, AttendanceSubmission, ErrorKind
from app.services.attendance_service import AttendanceDecisionEngine

router = APIRouter(prefix="/api", tags=["Présences"])

ERROR_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INVALID_DEVICE_IDENTITY: 400,
    ErrorKind.QR_EXPIRED: 410,
    ErrorKind.OUTSIDE_CLASSROOM: 403,
    ErrorKind.STUDENT_NOT_FOUND: 404,
    ErrorKind.DEVICE_BELONGS_TO_ANOTHER_STUDENT: 403,
    ErrorKind.DEVICE_ALREADY_USED_TODAY: 403,
    ErrorKind.UNAUTHORIZED_DEVICE: 403,
    ErrorKind.TRANSIENT_STORE_ERROR: 503,
    ErrorKind.INTERNAL_ERROR: 500,
}


@router.post("/attendance", response_model=AttendanceDecision, summary="Enregistrer une présence")
def submit_attendance(data: AttendanceSubmission, engine: AttendanceDecisionEngine = Depends(get_engine)):
    """
    Valide la soumission (structure, appareil, registre, usage du jour) puis marque
    l'étudiant présent pour la semaine. Une resoumission renvoie is_already_attended=true.
    Les refus portent un motif lisible et, si applicable, l'étudiant bloquant.
    """
    decision = engine.submit(data)
    status_code = 200 if decision.accepted else ERROR_STATUS.get(decision.error_kind, 400)
    return JSONResponse(status_code=status_code, content=decision.model_dump(mode="json"))
