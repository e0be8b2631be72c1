"""Confirmation service - Public client confirmation flow"""

import logging

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models import ConfirmationToken
from ..appointments.scheduling import from_storage, to_storage, utcnow
from .repository import ConfirmationRepository
from .schemas import ConfirmationAppointment
from .tokens import extract_confirmation_token, is_token_expired

logger = logging.getLogger(__name__)


class ConfirmationService:
    """Service layer for confirmation links opened by clients"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ConfirmationRepository()

    def _load(self, raw_token: str) -> ConfirmationToken:
        token = extract_confirmation_token(raw_token)
        if not token:
            logger.error(f"❌ Confirmation request without a usable token: {raw_token!r}")
            raise HTTPException(status_code=400, detail="Token required")

        confirmation = self.repo.get_by_token(self.db, token)
        if not confirmation:
            logger.warning(f"⚠️ Unknown confirmation token (raw={raw_token!r}, normalized={token})")
            raise HTTPException(status_code=404, detail="Invalid or expired token")
        return confirmation

    @staticmethod
    def _expired() -> HTTPException:
        return HTTPException(status_code=410, detail={"message": "Token expired", "status": "expired"})

    def get_confirmation(self, raw_token: str) -> ConfirmationAppointment:
        confirmation = self._load(raw_token)
        if is_token_expired(confirmation.expires_at):
            raise self._expired()

        appointment = confirmation.appointment
        client = appointment.client
        staff_name = " ".join(
            part for part in (appointment.final_staff_first_name, appointment.final_staff_last_name) if part
        )
        return ConfirmationAppointment(
            id=appointment.id,
            client=client.display_name if client else "",
            service=appointment.service.name if appointment.service else "",
            staff=staff_name,
            starts_at=from_storage(appointment.starts_at),
            duration_minutes=appointment.duration_minutes,
            token=confirmation.token,
            status=confirmation.status or "pending",
        )

    def answer(self, raw_token: str, confirmed: bool) -> str:
        """
        Record the client's answer.

        The token and every other pending token of the same appointment get
        the answer, and the appointment's confirmation status follows. A
        decline also cancels the appointment while it is still pending.
        """
        confirmation = self._load(raw_token)

        if is_token_expired(confirmation.expires_at):
            self.repo.expire_token(self.db, confirmation)
            raise self._expired()

        current = confirmation.status or "pending"
        if current != "pending":
            raise HTTPException(
                status_code=409,
                detail={"message": "This appointment was already answered", "status": current},
            )

        new_status = "confirmed" if confirmed else "cancelled"
        now = to_storage(utcnow())
        appointment = confirmation.appointment

        try:
            self.repo.resolve_pending_tokens(self.db, appointment.id, new_status, now)
            appointment.confirmation_status = new_status
            appointment.confirmed_at = now
            if not confirmed and (not appointment.status or appointment.status == "pending"):
                appointment.status = "cancelled"
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record confirmation for appointment {appointment.id}: {e}")
            raise HTTPException(status_code=500, detail="Could not record the answer") from e

        logger.info(f"✅ Appointment {appointment.id} {new_status} by client")
        return new_status
