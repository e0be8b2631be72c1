"""Appointment domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

APPOINTMENT_STATUSES = ("pending", "in_progress", "completed", "cancelled")


def _positive_duration(v):
    if v is not None and v <= 0:
        raise ValueError("Duration must be a positive number of minutes")
    return v


class AppointmentCreate(BaseModel):
    """Schema for booking a single appointment"""

    client_id: int
    service_id: int
    staff_id: int
    starts_at: datetime
    duration_minutes: int
    notes: Optional[str] = None

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, v):
        return _positive_duration(v)


class GroupItem(BaseModel):
    service_id: int
    staff_id: int
    duration_minutes: int
    notes: Optional[str] = None

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, v):
        return _positive_duration(v)


class AppointmentGroupCreate(BaseModel):
    """Schema for booking several simultaneous services for one client"""

    client_id: int
    starts_at: datetime
    items: list[GroupItem]

    @field_validator("items")
    @classmethod
    def validate_items(cls, v):
        if len(v) < 2:
            raise ValueError("A group booking needs at least 2 simultaneous services")
        return v


class AppointmentUpdate(BaseModel):
    """Schema for updating or rescheduling an appointment"""

    starts_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    staff_id: Optional[int] = None
    final_staff_id: Optional[int] = None
    service_id: Optional[int] = None
    final_service_id: Optional[int] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    skip_resource_check: bool = False

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, v):
        return _positive_duration(v)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in APPOINTMENT_STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(APPOINTMENT_STATUSES)}")
        return v


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: int
    client_id: int
    group_id: Optional[int] = None
    service_id: int
    final_service_id: Optional[int] = None
    staff_id: int
    final_staff_id: Optional[int] = None
    final_staff_first_name: Optional[str] = None
    final_staff_last_name: Optional[str] = None
    starts_at: datetime
    ends_at: datetime
    duration_minutes: int
    status: str
    confirmation_status: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_by_username: Optional[str] = None

    class Config:
        from_attributes = True


class AppointmentGroupResponse(BaseModel):
    group_id: int
    appointments: list[AppointmentResponse]


class ConfirmationLinkResponse(BaseModel):
    token: str
    expires_at: Optional[datetime] = None
    url: str
