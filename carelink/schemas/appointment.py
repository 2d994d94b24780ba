import datetime as dt
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional

from ..models.appointment import AppointmentStatus


class AppointmentCreate(BaseModel):
    doctor_id: int
    date: dt.date
    time: str = Field(..., min_length=1, max_length=5)
    reason: Optional[str] = Field(default=None, max_length=2000)


class AppointmentUpdate(BaseModel):
    date: Optional[dt.date] = None
    time: Optional[str] = Field(default=None, min_length=1, max_length=5)
    reason: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def at_least_one_field(self):
        if self.date is None and self.time is None and self.reason is None:
            raise ValueError("Nothing to update")
        return self


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    date: dt.date
    time: str
    reason: Optional[str] = None
    status: AppointmentStatus
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
    cancelled_at: Optional[dt.datetime] = None


class AppointmentMessage(BaseModel):
    message: str
    appointment: AppointmentResponse
