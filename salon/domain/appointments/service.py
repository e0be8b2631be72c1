"""Appointment service - Booking rules, conflict checks and persistence"""

import logging
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import APP_URL
from ...models import Appointment, AppointmentGroup, ConfirmationToken, Service, StaffMember, User
from ...roles import is_admin_role, is_staff_role, normalize_role
from ..confirmations.tokens import build_token_expiry, generate_token, is_token_expired
from .capacity import (
    ExistingBooking,
    ProposedBooking,
    ResourceConflict,
    ResourceInfo,
    find_resource_conflicts,
)
from .overlap import from_millis, interval_between, is_valid_interval
from .repository import AppointmentRepository
from .schemas import AppointmentCreate, AppointmentGroupCreate, AppointmentUpdate
from .scheduling import (
    MAX_PAST_SCHEDULE_HOURS,
    as_utc,
    from_storage,
    is_staff_enabled,
    is_within_past_scheduling_window,
    is_within_working_hours,
    to_storage,
    utcnow,
)

logger = logging.getLogger(__name__)

# Moves smaller than this are edits, not reschedules
RESCHEDULE_TOLERANCE = timedelta(seconds=60)


def collect_resource_conflicts(
    db: Session,
    user_id: int,
    proposed: list[ProposedBooking],
    exclude_ids: Iterable[int] = (),
    lock: bool = False,
) -> list[ResourceConflict]:
    """
    Load what the capacity check needs for a batch and run it.

    With lock=True the involved resource rows stay locked until the caller
    commits or rolls back, so two bookings racing for the same resource are
    checked one after the other.
    """
    repo = AppointmentRepository
    service_resources = repo.get_service_resource_map(db, user_id)
    resource_ids = {service_resources.get(p.service_id) for p in proposed} - {None}
    valid = [p.interval for p in proposed if is_valid_interval(p.interval)]
    if not resource_ids or not valid:
        return []

    resources = repo.get_resources(db, user_id, resource_ids, lock=lock)
    window_start = from_millis(min(i.start_ms for i in valid))
    window_end = from_millis(max(i.end_ms for i in valid))

    existing = [
        ExistingBooking(
            id=a.id,
            service_id=a.service_id,
            final_service_id=a.final_service_id,
            interval=interval_between(a.starts_at, a.ends_at),
            status=a.status,
            confirmation_status=a.confirmation_status,
        )
        for a in repo.get_appointments_in_window(db, user_id, window_start, window_end)
    ]

    return find_resource_conflicts(
        proposed,
        existing,
        service_resources,
        {r.id: ResourceInfo(id=r.id, name=r.name, capacity=r.capacity) for r in resources},
        exclude_ids,
    )


class AppointmentService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AppointmentRepository()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _booking_transaction(self, action: str):
        """Roll back (and release row locks) on any rejection or database failure"""
        try:
            yield
        except HTTPException:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Database error during {action}: {e}")
            raise HTTPException(status_code=500, detail=f"Could not complete {action}") from e

    @staticmethod
    def _forbid_staff(user: User) -> None:
        if is_staff_role(normalize_role(user.role)):
            logger.warning(f"⚠️ Staff user {user.id} attempted a booking operation")
            raise HTTPException(status_code=403, detail="Forbidden")

    @staticmethod
    def _check_past_window(starts_at: datetime) -> None:
        if not is_within_past_scheduling_window(starts_at):
            raise HTTPException(
                status_code=409,
                detail=f"Appointments cannot be booked more than {MAX_PAST_SCHEDULE_HOURS} hours in the past.",
            )

    def get_appointment(self, appointment_id: int, user: User) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id, user.owner_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")
        return appointment

    def _require_client(self, client_id: int, user_id: int) -> None:
        if not self.repo.get_client(self.db, client_id, user_id):
            raise HTTPException(status_code=404, detail="Client not found")

    def _require_service(self, service_id: int, user_id: int) -> Service:
        service = self.repo.get_service(self.db, service_id, user_id)
        if not service:
            raise HTTPException(status_code=404, detail="Service not found")
        return service

    def _check_booking_slot(
        self,
        user_id: int,
        staff: Optional[StaffMember],
        service: Service,
        starts_at: datetime,
        duration_minutes: int,
        opening_hours: list,
        exclude_id: Optional[int] = None,
    ) -> StaffMember:
        """Staff availability rules for one proposed slot on an already locked staff row"""
        if not staff:
            raise HTTPException(status_code=404, detail="Staff member not found")

        if not staff.active:
            raise HTTPException(status_code=409, detail="The staff member is inactive")

        if not is_within_working_hours(staff.working_hours, starts_at, duration_minutes):
            raise HTTPException(
                status_code=409, detail="The appointment is outside the staff member's working hours"
            )

        if not is_within_working_hours(opening_hours, starts_at, duration_minutes):
            raise HTTPException(status_code=409, detail="The appointment is outside the business opening hours")

        if not is_staff_enabled(service.enabled_staff_ids, staff.id):
            raise HTTPException(
                status_code=409,
                detail=f"The staff member is not enabled for the service {service.name}.",
            )

        ends_at = starts_at + timedelta(minutes=duration_minutes)
        overlapping = self.repo.find_staff_overlaps(
            self.db, user_id, staff.id, to_storage(starts_at), to_storage(ends_at), exclude_id
        )
        if overlapping:
            logger.warning(
                f"⚠️ Staff {staff.id} double booking rejected: overlaps appointment(s) {[a.id for a in overlapping]}"
            )
            raise HTTPException(
                status_code=409,
                detail="The staff member already has an appointment at that time. Adjust the date and time to avoid overlaps.",
            )

        return staff

    def _check_resources(
        self, user_id: int, proposed: list[ProposedBooking], exclude_ids: Iterable[int] = ()
    ) -> None:
        conflicts = collect_resource_conflicts(self.db, user_id, proposed, exclude_ids, lock=True)
        if conflicts:
            logger.warning(
                f"⚠️ Resource capacity exceeded for user {user_id}: "
                f"{[(c.resource_id, c.max_simultaneous, c.capacity) for c in conflicts]}"
            )
            raise HTTPException(
                status_code=409,
                detail={
                    "message": "Insufficient resources",
                    "conflicts": [c.to_dict() for c in conflicts],
                },
            )

    @staticmethod
    def _new_appointment(
        user: User,
        client_id: int,
        service: Service,
        staff: StaffMember,
        starts_at: datetime,
        duration_minutes: int,
        notes: Optional[str] = None,
        group_id: Optional[int] = None,
    ) -> Appointment:
        ends_at = starts_at + timedelta(minutes=duration_minutes)
        return Appointment(
            user_id=user.owner_id,
            client_id=client_id,
            group_id=group_id,
            service_id=service.id,
            final_service_id=service.id,
            staff_id=staff.id,
            final_staff_id=staff.id,
            final_staff_first_name=staff.first_name,
            final_staff_last_name=staff.last_name,
            starts_at=to_storage(starts_at),
            ends_at=to_storage(ends_at),
            duration_minutes=duration_minutes,
            status="pending",
            notes=notes,
            created_by=user.id,
            created_by_username=user.username,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_appointments(
        self,
        user: User,
        starts_from: Optional[datetime] = None,
        starts_to: Optional[datetime] = None,
        client_id: Optional[int] = None,
        staff_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Appointment]:
        """List appointments; staff only see in-progress work assigned to them"""
        appointments = self.repo.list_appointments(
            self.db,
            user.owner_id,
            starts_from=to_storage(starts_from) if starts_from else None,
            starts_to=to_storage(starts_to) if starts_to else None,
            client_id=client_id,
            staff_id=staff_id,
            status=status,
        )

        if is_staff_role(normalize_role(user.role)):
            if user.staff_id is None:
                return []
            return [
                a
                for a in appointments
                if a.status == "in_progress" and user.staff_id in (a.staff_id, a.final_staff_id)
            ]

        return appointments

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def create_appointment(self, data: AppointmentCreate, user: User) -> Appointment:
        """Book a single appointment after staff, hours and capacity checks"""
        self._forbid_staff(user)
        user_id = user.owner_id
        starts_at = as_utc(data.starts_at)
        self._check_past_window(starts_at)

        logger.info(
            f"📥 Booking request: user={user_id} staff={data.staff_id} service={data.service_id} at {starts_at.isoformat()}"
        )

        with self._booking_transaction("appointment booking"):
            self._require_client(data.client_id, user_id)
            service = self._require_service(data.service_id, user_id)
            opening_hours = self.repo.get_opening_hours(self.db, user_id)
            staff = self._check_booking_slot(
                user_id,
                self.repo.get_staff(self.db, data.staff_id, user_id, lock=True),
                service,
                starts_at,
                data.duration_minutes,
                opening_hours,
            )

            ends_at = starts_at + timedelta(minutes=data.duration_minutes)
            self._check_resources(user_id, [ProposedBooking(service.id, interval_between(starts_at, ends_at))])

            appointment = self._new_appointment(
                user, data.client_id, service, staff, starts_at, data.duration_minutes, data.notes
            )
            self.repo.add_appointments(self.db, [appointment])

        logger.info(f"✅ Appointment {appointment.id} booked for staff {staff.id}")
        return appointment

    def create_group(
        self, data: AppointmentGroupCreate, user: User
    ) -> tuple[AppointmentGroup, list[Appointment]]:
        """Book several services starting together for one client, all or nothing"""
        self._forbid_staff(user)
        user_id = user.owner_id
        starts_at = as_utc(data.starts_at)
        self._check_past_window(starts_at)

        seen_staff: set[int] = set()
        for item in data.items:
            if item.staff_id in seen_staff:
                raise HTTPException(
                    status_code=409,
                    detail="A staff member cannot be assigned twice in the same group",
                )
            seen_staff.add(item.staff_id)

        with self._booking_transaction("group booking"):
            self._require_client(data.client_id, user_id)
            services = self.repo.get_services(self.db, user_id, [item.service_id for item in data.items])
            opening_hours = self.repo.get_opening_hours(self.db, user_id)
            locked_staff = self.repo.get_staff_many(self.db, user_id, seen_staff, lock=True)

            slots = []
            proposed = []
            for item in data.items:
                service = services.get(item.service_id)
                if not service:
                    raise HTTPException(status_code=404, detail="Service not found")
                staff = self._check_booking_slot(
                    user_id,
                    locked_staff.get(item.staff_id),
                    service,
                    starts_at,
                    item.duration_minutes,
                    opening_hours,
                )
                ends_at = starts_at + timedelta(minutes=item.duration_minutes)
                proposed.append(ProposedBooking(service.id, interval_between(starts_at, ends_at)))
                slots.append((item, service, staff))

            self._check_resources(user_id, proposed)

            group = self.repo.create_group(self.db, user_id, data.client_id, to_storage(starts_at))
            appointments = [
                self._new_appointment(
                    user,
                    data.client_id,
                    service,
                    staff,
                    starts_at,
                    item.duration_minutes,
                    item.notes,
                    group_id=group.id,
                )
                for item, service, staff in slots
            ]
            self.repo.add_appointments(self.db, appointments)

        logger.info(f"✅ Group {group.id} booked with {len(appointments)} appointments")
        return group, appointments

    def update_appointment(self, appointment_id: int, data: AppointmentUpdate, user: User) -> Appointment:
        role = normalize_role(user.role)
        if not is_admin_role(role) and not is_staff_role(role):
            raise HTTPException(status_code=403, detail="Forbidden")

        appointment = self.get_appointment(appointment_id, user)
        if appointment.status == "completed":
            raise HTTPException(status_code=403, detail="Closed appointments cannot be modified")

        if is_staff_role(role):
            return self._update_as_staff(appointment, data, user)
        return self._update_as_admin(appointment, data, user)

    def _update_as_staff(self, appointment: Appointment, data: AppointmentUpdate, user: User) -> Appointment:
        """
        Staff may start their own pending appointments and record the
        service actually performed on in-progress ones. Other fields are ignored.
        """
        if not user.staff_id:
            raise HTTPException(status_code=403, detail="Staff user has no linked staff member")

        if user.staff_id not in (appointment.staff_id, appointment.final_staff_id):
            raise HTTPException(status_code=403, detail="You do not have access to this appointment")

        updates = {}
        if data.status == "in_progress":
            if appointment.status != "pending":
                raise HTTPException(status_code=400, detail="Only pending appointments can be started")
            updates["status"] = "in_progress"
            if not appointment.started_at:
                updates["started_at"] = to_storage(utcnow())
        elif appointment.status != "in_progress":
            raise HTTPException(status_code=403, detail="Only in-progress appointments can be modified")

        if data.final_service_id is not None:
            service = self._require_service(data.final_service_id, user.owner_id)
            if not is_staff_enabled(service.enabled_staff_ids, user.staff_id):
                raise HTTPException(
                    status_code=409, detail=f"You are not enabled for the service {service.name}."
                )
            updates["final_service_id"] = service.id

        if not updates:
            raise HTTPException(status_code=400, detail="No valid changes")

        updates["updated_by"] = user.id
        return self.repo.update_appointment(self.db, appointment, **updates)

    def _update_as_admin(self, appointment: Appointment, data: AppointmentUpdate, user: User) -> Appointment:
        user_id = user.owner_id
        current_start = from_storage(appointment.starts_at)
        starts_at = as_utc(data.starts_at) if data.starts_at is not None else current_start
        duration = data.duration_minutes or appointment.duration_minutes
        staff_id = data.staff_id or appointment.staff_id
        service_id = data.service_id or appointment.service_id

        is_reschedule = data.starts_at is not None and abs(starts_at - current_start) > RESCHEDULE_TOLERANCE
        if is_reschedule:
            self._check_past_window(starts_at)

        ends_at = starts_at + timedelta(minutes=duration)

        with self._booking_transaction("appointment update"):
            service = self._require_service(service_id, user_id)
            if data.final_service_id is not None:
                final_service_id = self._require_service(data.final_service_id, user_id).id
            elif data.service_id is not None:
                final_service_id = service.id
            else:
                final_service_id = appointment.final_service_id or service.id

            status = data.status or appointment.status
            if status == "cancelled":
                # A cancelled booking frees its slot, nothing to check
                staff = self.repo.get_staff(self.db, staff_id, user_id)
                if not staff:
                    raise HTTPException(status_code=404, detail="Staff member not found")
            else:
                opening_hours = self.repo.get_opening_hours(self.db, user_id)
                staff = self._check_booking_slot(
                    user_id,
                    self.repo.get_staff(self.db, staff_id, user_id, lock=True),
                    service,
                    starts_at,
                    duration,
                    opening_hours,
                    exclude_id=appointment.id,
                )

            if status != "cancelled" and not data.skip_resource_check:
                self._check_resources(
                    user_id,
                    [ProposedBooking(final_service_id, interval_between(starts_at, ends_at))],
                    exclude_ids=[appointment.id],
                )

            updates = {
                "starts_at": to_storage(starts_at),
                "ends_at": to_storage(ends_at),
                "duration_minutes": duration,
                "staff_id": staff.id,
                "service_id": service.id,
                "final_service_id": final_service_id,
                "updated_by": user.id,
            }

            # Keep the name snapshot in step with whoever performs the work
            final_staff_id = data.final_staff_id or appointment.final_staff_id or staff.id
            current_final_id = appointment.final_staff_id or appointment.staff_id
            if final_staff_id != current_final_id or appointment.final_staff_first_name is None:
                final_staff = staff if final_staff_id == staff.id else self.repo.get_staff(
                    self.db, final_staff_id, user_id
                )
                if not final_staff:
                    raise HTTPException(status_code=404, detail="Staff member not found")
                updates["final_staff_first_name"] = final_staff.first_name
                updates["final_staff_last_name"] = final_staff.last_name
            updates["final_staff_id"] = final_staff_id

            updates["status"] = status
            if status == "in_progress" and not appointment.started_at:
                updates["started_at"] = to_storage(utcnow())
            if status == "completed" and not appointment.finished_at:
                updates["finished_at"] = to_storage(utcnow())

            if data.notes is not None:
                updates["notes"] = data.notes

            appointment = self.repo.update_appointment(self.db, appointment, **updates)

        logger.info(f"✅ Appointment {appointment.id} updated by user {user.id}")
        return appointment

    def delete_appointment(self, appointment_id: int, user: User) -> dict:
        self._forbid_staff(user)
        appointment = self.get_appointment(appointment_id, user)
        self.repo.delete_appointment(self.db, appointment)
        logger.info(f"🗑️ Appointment {appointment_id} deleted by user {user.id}")
        return {"message": "Appointment deleted"}

    # ------------------------------------------------------------------
    # Confirmation links
    # ------------------------------------------------------------------

    def issue_confirmation(self, appointment_id: int, user: User) -> tuple[ConfirmationToken, str]:
        """Reuse the newest live pending token for the appointment, or mint a new one"""
        appointment = self.get_appointment(appointment_id, user)

        if appointment.confirmation_status in ("confirmed", "cancelled"):
            raise HTTPException(
                status_code=409,
                detail={
                    "message": "The appointment was already answered",
                    "status": appointment.confirmation_status,
                },
            )

        token = self.repo.get_latest_pending_token(self.db, appointment.id)
        if token is None or is_token_expired(token.expires_at):
            token = self.repo.create_token(
                self.db,
                appointment_id=appointment.id,
                user_id=user.owner_id,
                token=generate_token(),
                status="pending",
                expires_at=build_token_expiry(),
            )
            logger.info(f"🔑 Confirmation token created for appointment {appointment.id}")

        if appointment.confirmation_status is None:
            self.repo.update_appointment(self.db, appointment, confirmation_status="pending")

        return token, f"{APP_URL}/confirm/{token.token}"
