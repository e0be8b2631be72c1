"""Confirmation router - Public endpoints behind client confirmation links"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from .schemas import ConfirmationAnswer, ConfirmationDetailResponse, ConfirmationResultResponse
from .service import ConfirmationService

router = APIRouter(prefix="/confirmations", tags=["Confirmations"])


def get_confirmation_service(db: Session = Depends(get_db)) -> ConfirmationService:
    """Dependency injection for ConfirmationService"""
    return ConfirmationService(db)


@router.get("/{token}", response_model=ConfirmationDetailResponse)
async def get_confirmation(token: str, service: ConfirmationService = Depends(get_confirmation_service)):
    """Appointment summary for a confirmation link (no authentication)"""
    return ConfirmationDetailResponse(appointment=service.get_confirmation(token))


@router.post("/{token}", response_model=ConfirmationResultResponse)
async def answer_confirmation(
    token: str,
    data: ConfirmationAnswer,
    service: ConfirmationService = Depends(get_confirmation_service),
):
    """Confirm or decline an appointment (no authentication)"""
    status = service.answer(token, data.confirmed)
    return ConfirmationResultResponse(success=True, status=status)
