from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Dict, List, Optional


class DoctorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: Optional[str] = None
    specialization: str
    bio: Optional[str] = None
    working_days: str


class DoctorAdminResponse(DoctorResponse):
    email: Optional[str] = None
    verified: bool = False
    rejected: bool = False
    rejection_reason: Optional[str] = None
    verified_at: Optional[datetime] = None


class AvailabilityResponse(BaseModel):
    doctor_id: int
    slots: Dict[str, List[str]]


class DoctorVerification(BaseModel):
    verified: bool
    rejected: bool = False
    rejection_reason: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def reason_required_when_rejected(self):
        if self.rejected and not (self.rejection_reason or "").strip():
            raise ValueError("Rejection reason is required")
        if self.rejected and self.verified:
            raise ValueError("A doctor cannot be both verified and rejected")
        return self
