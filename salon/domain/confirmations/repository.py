"""Confirmation repository - Database operations for client confirmation tokens"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Appointment, ConfirmationToken


class ConfirmationRepository:
    """Repository for confirmation token database operations"""

    @staticmethod
    def get_by_token(db: Session, token: str) -> Optional[ConfirmationToken]:
        return (
            db.query(ConfirmationToken)
            .options(
                joinedload(ConfirmationToken.appointment).joinedload(Appointment.client),
                joinedload(ConfirmationToken.appointment).joinedload(Appointment.service),
            )
            .filter(ConfirmationToken.token == token)
            .first()
        )

    @staticmethod
    def expire_token(db: Session, confirmation: ConfirmationToken) -> None:
        if confirmation.status == "pending":
            confirmation.status = "expired"
            db.commit()

    @staticmethod
    def resolve_pending_tokens(db: Session, appointment_id: int, status: str, responded_at: datetime) -> int:
        """Answer every pending token of an appointment; caller commits"""
        return (
            db.query(ConfirmationToken)
            .filter(
                ConfirmationToken.appointment_id == appointment_id,
                ConfirmationToken.status == "pending",
            )
            .update({"status": status, "responded_at": responded_at}, synchronize_session="fetch")
        )
