"""Appointment repository - Database operations for bookings"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import (
    Appointment,
    AppointmentGroup,
    BusinessConfig,
    Client,
    ConfirmationToken,
    Resource,
    Service,
    StaffMember,
)

CANCELLED = "cancelled"


def _active(query):
    """Drop appointments cancelled by the salon or by the client"""
    return query.filter(
        Appointment.status != CANCELLED,
        or_(Appointment.confirmation_status.is_(None), Appointment.confirmation_status != CANCELLED),
    )


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_appointment(db: Session, appointment_id: int, user_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.user_id == user_id)
            .first()
        )

    @staticmethod
    def list_appointments(
        db: Session,
        user_id: int,
        starts_from: Optional[datetime] = None,
        starts_to: Optional[datetime] = None,
        client_id: Optional[int] = None,
        staff_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Appointment]:
        query = db.query(Appointment).filter(Appointment.user_id == user_id)

        if starts_from:
            query = query.filter(Appointment.starts_at >= starts_from)
        if starts_to:
            query = query.filter(Appointment.starts_at <= starts_to)
        if client_id:
            query = query.filter(Appointment.client_id == client_id)
        if staff_id:
            query = query.filter(Appointment.staff_id == staff_id)
        if status:
            query = query.filter(Appointment.status == status)

        return query.order_by(Appointment.starts_at.asc()).all()

    @staticmethod
    def get_client(db: Session, client_id: int, user_id: int) -> Optional[Client]:
        return db.query(Client).filter(Client.id == client_id, Client.user_id == user_id).first()

    @staticmethod
    def get_staff(db: Session, staff_id: int, user_id: int, lock: bool = False) -> Optional[StaffMember]:
        """Fetch a staff member; lock=True holds the row until commit/rollback"""
        query = db.query(StaffMember).filter(StaffMember.id == staff_id, StaffMember.user_id == user_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_staff_many(
        db: Session, user_id: int, staff_ids: Iterable[int], lock: bool = False
    ) -> dict[int, StaffMember]:
        """Fetch several staff members at once, locked in id order when lock=True"""
        ids = sorted(set(staff_ids))
        if not ids:
            return {}
        query = (
            db.query(StaffMember)
            .filter(StaffMember.user_id == user_id, StaffMember.id.in_(ids))
            .order_by(StaffMember.id)
        )
        if lock:
            query = query.with_for_update()
        return {staff.id: staff for staff in query.all()}

    @staticmethod
    def get_service(db: Session, service_id: int, user_id: int) -> Optional[Service]:
        return db.query(Service).filter(Service.id == service_id, Service.user_id == user_id).first()

    @staticmethod
    def get_services(db: Session, user_id: int, service_ids: Iterable[int]) -> dict[int, Service]:
        ids = list(set(service_ids))
        if not ids:
            return {}
        services = db.query(Service).filter(Service.user_id == user_id, Service.id.in_(ids)).all()
        return {service.id: service for service in services}

    @staticmethod
    def get_service_resource_map(db: Session, user_id: int) -> dict[int, Optional[int]]:
        rows = db.query(Service.id, Service.resource_id).filter(Service.user_id == user_id).all()
        return {service_id: resource_id for service_id, resource_id in rows}

    @staticmethod
    def get_resources(
        db: Session, user_id: int, resource_ids: Iterable[int], lock: bool = False
    ) -> list[Resource]:
        ids = sorted(set(resource_ids))
        if not ids:
            return []
        # Stable id order so concurrent lockers queue instead of deadlocking
        query = (
            db.query(Resource)
            .filter(Resource.user_id == user_id, Resource.id.in_(ids))
            .order_by(Resource.id)
        )
        if lock:
            query = query.with_for_update()
        return query.all()

    @staticmethod
    def get_opening_hours(db: Session, user_id: int) -> list:
        config = db.query(BusinessConfig).filter(BusinessConfig.user_id == user_id).first()
        return (config.opening_hours or []) if config else []

    @staticmethod
    def find_staff_overlaps(
        db: Session,
        user_id: int,
        staff_id: int,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: Optional[int] = None,
    ) -> list[Appointment]:
        """Active appointments of a staff member intersecting [starts_at, ends_at)"""
        query = db.query(Appointment).filter(
            Appointment.user_id == user_id,
            Appointment.staff_id == staff_id,
            Appointment.starts_at < ends_at,
            Appointment.ends_at > starts_at,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return _active(query).all()

    @staticmethod
    def get_appointments_in_window(
        db: Session, user_id: int, window_start: datetime, window_end: datetime
    ) -> list[Appointment]:
        """All appointments intersecting the window; cancellation filtering is left to the caller"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.user_id == user_id,
                Appointment.starts_at < window_end,
                Appointment.ends_at > window_start,
            )
            .all()
        )

    @staticmethod
    def create_group(db: Session, user_id: int, client_id: int, starts_at: datetime) -> AppointmentGroup:
        group = AppointmentGroup(user_id=user_id, client_id=client_id, starts_at=starts_at)
        db.add(group)
        db.flush()
        return group

    @staticmethod
    def add_appointments(db: Session, appointments: list[Appointment]) -> list[Appointment]:
        """Persist a batch and commit, releasing any row locks taken during checks"""
        db.add_all(appointments)
        db.commit()
        for appointment in appointments:
            db.refresh(appointment)
        return appointments

    @staticmethod
    def update_appointment(db: Session, appointment: Appointment, **updates) -> Appointment:
        for key, value in updates.items():
            if hasattr(appointment, key):
                setattr(appointment, key, value)
        db.commit()
        db.refresh(appointment)
        return appointment

    @staticmethod
    def delete_appointment(db: Session, appointment: Appointment) -> None:
        db.delete(appointment)
        db.commit()

    # Confirmation token methods
    @staticmethod
    def get_latest_pending_token(db: Session, appointment_id: int) -> Optional[ConfirmationToken]:
        return (
            db.query(ConfirmationToken)
            .filter(
                ConfirmationToken.appointment_id == appointment_id,
                ConfirmationToken.status == "pending",
            )
            .order_by(ConfirmationToken.id.desc())
            .first()
        )

    @staticmethod
    def create_token(db: Session, **token_data) -> ConfirmationToken:
        token = ConfirmationToken(**token_data)
        db.add(token)
        db.commit()
        db.refresh(token)
        return token
