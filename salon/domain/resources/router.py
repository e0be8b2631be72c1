"""Resource router - FastAPI endpoints for resource availability"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .schemas import AvailabilityRequest, AvailabilityResponse, ResourceConflictResponse
from .service import ResourceService

router = APIRouter(prefix="/resources", tags=["Resources"])


def get_resource_service(db: Session = Depends(get_db)) -> ResourceService:
    """Dependency injection for ResourceService"""
    return ResourceService(db)


@router.post("/availability", response_model=AvailabilityResponse)
async def check_availability(
    data: AvailabilityRequest,
    current_user: User = Depends(get_current_user),
    service: ResourceService = Depends(get_resource_service),
):
    """Check whether services starting together fit the capacity of their resources"""
    conflicts = service.check_availability(data, current_user)
    return AvailabilityResponse(conflicts=[ResourceConflictResponse(**c.to_dict()) for c in conflicts])
