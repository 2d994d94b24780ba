from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from ...api.deps import get_appointment_service, get_verified_doctor_identity
from ...core.exceptions import ValidationError
from ...models.appointment import AppointmentStatus
from ...services.appointment_service import AppointmentService
from ...services.identity import Identity
from ...schemas.appointment import AppointmentResponse

router = APIRouter(prefix="/doctor", tags=["Doctor"])


@router.get("/appointments", response_model=List[AppointmentResponse])
async def list_doctor_appointments(
    status: Optional[str] = None,
    past: bool = False,
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(get_verified_doctor_identity),
    service: AppointmentService = Depends(get_appointment_service)
):
    """The verified doctor's upcoming (or past) appointments."""
    status_filter = None
    if status:
        try:
            status_filter = AppointmentStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown appointment status: {status}")

    return service.list_for_doctor(identity, status=status_filter, past=past, limit=limit)
