# clinic/schemas.py
from datetime import datetime, date, time
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from .models import AuditAction


# --- Base Schemas ---
class BaseSchema(BaseModel):
    class Config:
        from_attributes = True


# --- Auth Schemas ---
class SessionUser(BaseSchema):
    user_id: int
    username: str
    role: str
    login_time: Optional[datetime] = None
    last_activity: Optional[datetime] = None


class LoginResponse(BaseSchema):
    message: str
    user: SessionUser


class LoginFailureResponse(BaseSchema):
    detail: str
    locked: bool = False
    lockout_until: Optional[datetime] = None
    attempts: int = 0
    remaining_attempts: Optional[int] = None
    attempt_message: Optional[str] = None


# --- Appointment Schemas ---
class AppointmentCreate(BaseSchema):
    """Missing fields are reported as validation messages rather than rejected by the schema."""
    patient_id: Optional[int] = None
    doctor_name: Optional[str] = Field(None, max_length=100)
    appointment_date: Optional[date] = None
    appointment_time: Optional[time] = None
    duration_minutes: Optional[int] = Field(60, description="Length of the appointment in minutes")
    reason: Optional[str] = Field(None, max_length=2000)


class AppointmentUpdate(BaseSchema):
    appointment_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    doctor_name: Optional[str] = Field(None, max_length=100)
    reason: Optional[str] = Field(None, max_length=2000)


class AppointmentCreated(BaseSchema):
    id: int
    message: str = "Appointment scheduled successfully!"


class AppointmentResponse(BaseSchema):
    id: int
    patient_id: int
    patient_name: Optional[str] = None
    doctor_id: Optional[int] = None
    doctor_name: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    reason: Optional[str] = None
    created_at: datetime


# --- Audit Log Schemas ---
class AuditLogResponse(BaseSchema):
    id: int
    user_id: int
    username: str
    action: str
    description: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime

    @computed_field
    @property
    def action_label(self) -> str:
        return AuditAction.display(self.action)


class AuditLogPage(BaseSchema):
    entries: List[AuditLogResponse]
    page: int
    page_size: int
    total: int
    total_pages: int


class ErrorResponse(BaseSchema):
    errors: List[str]
