from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from ...core.database import get_db
from ...api.deps import get_admin_identity, get_clock
from ...core.security import Clock
from ...models.doctor import Doctor
from ...services.doctor_service import DoctorService
from ...services.identity import Identity
from ...schemas.doctor import DoctorAdminResponse, DoctorVerification

router = APIRouter(prefix="/admin", tags=["Admin"])


def _admin_view(doctor: Doctor) -> DoctorAdminResponse:
    return DoctorAdminResponse(
        id=doctor.id,
        user_id=doctor.user_id,
        name=doctor.name,
        email=doctor.user.email if doctor.user else None,
        specialization=doctor.specialization,
        bio=doctor.bio,
        working_days=doctor.working_days,
        verified=bool(doctor.user and doctor.user.verified),
        rejected=bool(doctor.rejected),
        rejection_reason=doctor.rejection_reason,
        verified_at=doctor.verified_at,
    )


@router.get("/doctors", response_model=List[DoctorAdminResponse])
async def list_doctors_for_review(
    status: str = "pending",
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_admin_identity)
):
    """List doctors by verification status (admin only)."""
    doctors = DoctorService(db).list_for_admin(identity, status)
    return [_admin_view(doctor) for doctor in doctors]


@router.post("/doctors/{doctor_id}/verify")
async def verify_doctor(
    doctor_id: int,
    decision: DoctorVerification,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    identity: Identity = Depends(get_admin_identity)
):
    """Approve or reject a doctor account (admin only)."""
    doctor = DoctorService(db, clock).set_verification(identity, doctor_id, decision)
    return {
        "success": True,
        "message": "Doctor approved successfully" if decision.verified else "Doctor rejected successfully",
        "doctor": _admin_view(doctor),
    }
