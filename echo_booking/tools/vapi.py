from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from echo_booking.dependencies.services import get_booking_service
from echo_booking.schemas.booking import (
    BookingRequest,
    BookingResponse,
    CancelRequest,
    ErrorResponse,
    FindSlotsRequest,
    FindSlotsResponse,
    HandoffResponse,
    RescheduleRequest,
    SendMessageRequest,
    SuccessResponse,
)
from echo_booking.services import BookingService
from echo_booking.services.exceptions import ServiceError

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def error_response(exc: ServiceError) -> JSONResponse:
    # Downstream failures collapse to internal_error without their details.
    message = None if exc.code == "internal_error" else str(exc)
    body = ErrorResponse(error=exc.code, message=message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))


@router.post("/find-slots", response_model=FindSlotsResponse, responses=ERROR_RESPONSES)
async def find_slots(
    req: FindSlotsRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.find_slots(req)
    except ServiceError as exc:
        return error_response(exc)


@router.post("/book", response_model=BookingResponse, responses=ERROR_RESPONSES)
async def book(
    req: BookingRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.book(req)
    except ServiceError as exc:
        return error_response(exc)


@router.post("/reschedule", response_model=BookingResponse, responses=ERROR_RESPONSES)
async def reschedule(
    req: RescheduleRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.reschedule(req)
    except ServiceError as exc:
        return error_response(exc)


@router.post("/cancel", response_model=SuccessResponse, responses=ERROR_RESPONSES)
async def cancel(
    req: CancelRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.cancel(req)
    except ServiceError as exc:
        return error_response(exc)


@router.post("/send-message", response_model=SuccessResponse, responses=ERROR_RESPONSES)
async def send_message(
    req: SendMessageRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.send_message(req)
    except ServiceError as exc:
        return error_response(exc)


@router.post("/handoff", response_model=HandoffResponse)
async def handoff(service: BookingService = Depends(get_booking_service)):
    return service.handoff()
