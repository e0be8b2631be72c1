"""Appointment router - FastAPI endpoints for booking operations"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import Appointment, User
from .scheduling import from_storage
from .schemas import (
    AppointmentCreate,
    AppointmentGroupCreate,
    AppointmentGroupResponse,
    AppointmentResponse,
    AppointmentUpdate,
    ConfirmationLinkResponse,
)
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db)


def _appointment_response(a: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=a.id,
        client_id=a.client_id,
        group_id=a.group_id,
        service_id=a.service_id,
        final_service_id=a.final_service_id,
        staff_id=a.staff_id,
        final_staff_id=a.final_staff_id,
        final_staff_first_name=a.final_staff_first_name,
        final_staff_last_name=a.final_staff_last_name,
        starts_at=from_storage(a.starts_at),
        ends_at=from_storage(a.ends_at),
        duration_minutes=a.duration_minutes,
        status=a.status,
        confirmation_status=a.confirmation_status,
        started_at=from_storage(a.started_at) if a.started_at else None,
        finished_at=from_storage(a.finished_at) if a.finished_at else None,
        notes=a.notes,
        created_by_username=a.created_by_username,
    )


@router.get("", response_model=list[AppointmentResponse])
async def get_appointments(
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
    starts_from: Optional[datetime] = Query(None),
    starts_to: Optional[datetime] = Query(None),
    client_id: Optional[int] = Query(None),
    staff_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
):
    """List appointments with optional filters"""
    appointments = service.list_appointments(current_user, starts_from, starts_to, client_id, staff_id, status)
    return [_appointment_response(a) for a in appointments]


@router.post("", response_model=AppointmentResponse, status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book a single appointment"""
    appointment = service.create_appointment(data, current_user)
    return _appointment_response(appointment)


@router.post("/group", response_model=AppointmentGroupResponse, status_code=201)
async def create_appointment_group(
    data: AppointmentGroupCreate,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book simultaneous services for one client"""
    group, appointments = service.create_group(data, current_user)
    return AppointmentGroupResponse(
        group_id=group.id,
        appointments=[_appointment_response(a) for a in appointments],
    )


@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.update_appointment(appointment_id, data, current_user)
    return _appointment_response(appointment)


@router.delete("/{appointment_id}")
async def delete_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.delete_appointment(appointment_id, current_user)


@router.post("/{appointment_id}/confirmation", response_model=ConfirmationLinkResponse)
async def issue_confirmation(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Get or create the client confirmation link for an appointment"""
    token, url = service.issue_confirmation(appointment_id, current_user)
    return ConfirmationLinkResponse(
        token=token.token,
        expires_at=from_storage(token.expires_at) if token.expires_at else None,
        url=url,
    )
