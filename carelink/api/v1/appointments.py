from fastapi import APIRouter, Depends, status
from typing import List

from ...api.deps import get_appointment_service, get_current_identity, get_patient_identity
from ...core.security import UserRole
from ...services.appointment_service import AppointmentService
from ...services.identity import Identity
from ...schemas.appointment import (
    AppointmentCreate, AppointmentUpdate, AppointmentResponse, AppointmentMessage
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: AppointmentCreate,
    identity: Identity = Depends(get_patient_identity),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Book an appointment slot."""
    return service.create_appointment(identity, data)


@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(
    identity: Identity = Depends(get_current_identity),
    service: AppointmentService = Depends(get_appointment_service)
):
    """The caller's appointments: a patient's bookings or a doctor's schedule."""
    if identity.role == UserRole.DOCTOR:
        return service.list_for_doctor(identity)
    return service.list_for_patient(identity)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    identity: Identity = Depends(get_current_identity),
    service: AppointmentService = Depends(get_appointment_service)
):
    return service.get_appointment(identity, appointment_id)


@router.patch("/{appointment_id}", response_model=AppointmentMessage)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    identity: Identity = Depends(get_current_identity),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Reschedule an appointment or update its reason."""
    appointment = service.reschedule_appointment(identity, appointment_id, data)
    return AppointmentMessage(
        message="Appointment updated successfully",
        appointment=AppointmentResponse.model_validate(appointment),
    )


@router.delete("/{appointment_id}", response_model=AppointmentMessage)
async def cancel_appointment(
    appointment_id: int,
    identity: Identity = Depends(get_current_identity),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Cancel an appointment. Repeating the call succeeds without further changes."""
    appointment = service.cancel_appointment(identity, appointment_id)
    return AppointmentMessage(
        message="Appointment cancelled successfully",
        appointment=AppointmentResponse.model_validate(appointment),
    )


@router.post("/{appointment_id}/cancel", response_model=AppointmentMessage)
async def cancel_appointment_post(
    appointment_id: int,
    identity: Identity = Depends(get_current_identity),
    service: AppointmentService = Depends(get_appointment_service)
):
    return await cancel_appointment(appointment_id, identity, service)
