"""Confirmation domain schemas"""

from datetime import datetime

from pydantic import BaseModel


class ConfirmationAnswer(BaseModel):
    confirmed: bool


class ConfirmationAppointment(BaseModel):
    """What the client sees on the public confirmation page"""

    id: int
    client: str
    service: str
    staff: str
    starts_at: datetime
    duration_minutes: int
    token: str
    status: str


class ConfirmationDetailResponse(BaseModel):
    appointment: ConfirmationAppointment


class ConfirmationResultResponse(BaseModel):
    success: bool
    status: str
