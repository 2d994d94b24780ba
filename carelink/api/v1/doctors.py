from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from datetime import date
from typing import List, Optional

from ...core.config import Settings
from ...core.database import get_db
from ...core.exceptions import ValidationError
from ...api.deps import get_current_identity, get_settings, get_today
from ...services.availability import AvailabilityCalculator
from ...services.doctor_service import DoctorService
from ...services.identity import Identity
from ...schemas.doctor import AvailabilityResponse, DoctorResponse

router = APIRouter(prefix="/doctors", tags=["Doctors"])


@router.get("", response_model=List[DoctorResponse])
async def list_doctors(
    specialization: Optional[str] = None,
    db: Session = Depends(get_db),
    _: Identity = Depends(get_current_identity)
):
    """List doctors patients can book."""
    return DoctorService(db).list_bookable(specialization)


@router.get("/{doctor_id}", response_model=DoctorResponse)
async def get_doctor(
    doctor_id: int,
    db: Session = Depends(get_db),
    _: Identity = Depends(get_current_identity)
):
    """Get a bookable doctor's profile."""
    return DoctorService(db).get_bookable(doctor_id)


@router.get("/{doctor_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    doctor_id: int,
    from_date: Optional[date] = None,
    days: Optional[int] = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    today: date = Depends(get_today),
    _: Identity = Depends(get_current_identity)
):
    """Open slots per day, in calendar and slot-grid order."""
    window_days = settings.AVAILABILITY_WINDOW_DAYS if days is None else days
    if window_days > settings.MAX_AVAILABILITY_WINDOW_DAYS:
        raise ValidationError(
            f"Availability window cannot exceed {settings.MAX_AVAILABILITY_WINDOW_DAYS} days"
        )

    doctor = DoctorService(db).get_bookable(doctor_id)
    calculator = AvailabilityCalculator(db, settings.SLOT_GRID)
    slots = calculator.available_slots(doctor, from_date or today, window_days)

    return AvailabilityResponse(
        doctor_id=doctor.id,
        slots={day.isoformat(): times for day, times in slots.items()},
    )
