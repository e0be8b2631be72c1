"""Resource domain schemas - Availability pre-check"""

from datetime import datetime
from typing import Union

from pydantic import BaseModel, field_validator


class AvailabilityItem(BaseModel):
    service_id: int
    duration_minutes: int

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, v):
        if v <= 0:
            raise ValueError("Duration must be a positive number of minutes")
        return v


class AvailabilityRequest(BaseModel):
    """Services that would start together at ``starts_at``"""

    starts_at: datetime
    items: list[AvailabilityItem]
    # Appointments being edited, so they do not count against themselves
    exclude_appointment_ids: list[int] = []

    @field_validator("items")
    @classmethod
    def validate_items(cls, v):
        if not v:
            raise ValueError("At least one item is required")
        return v


class ResourceConflictResponse(BaseModel):
    resource_id: int
    resource_name: str
    capacity: Union[int, float]
    max_simultaneous: int


class AvailabilityResponse(BaseModel):
    conflicts: list[ResourceConflictResponse]
