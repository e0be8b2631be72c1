"""Resource service - Capacity pre-check for the booking form"""

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from ...models import User
from ..appointments.capacity import ProposedBooking, ResourceConflict
from ..appointments.overlap import interval_between
from ..appointments.scheduling import as_utc
from ..appointments.service import collect_resource_conflicts
from .schemas import AvailabilityRequest

logger = logging.getLogger(__name__)


class ResourceService:
    """Service layer for resource availability"""

    def __init__(self, db: Session):
        self.db = db

    def check_availability(self, data: AvailabilityRequest, user: User) -> list[ResourceConflict]:
        """Report resources the proposed batch would overbook, without locking or writing"""
        starts_at = as_utc(data.starts_at)
        proposed = [
            ProposedBooking(
                item.service_id,
                interval_between(starts_at, starts_at + timedelta(minutes=item.duration_minutes)),
            )
            for item in data.items
        ]

        conflicts = collect_resource_conflicts(
            self.db, user.owner_id, proposed, exclude_ids=data.exclude_appointment_ids
        )
        if conflicts:
            logger.info(
                f"📊 Availability check for user {user.owner_id}: {len(conflicts)} resource conflict(s)"
            )
        return conflicts
