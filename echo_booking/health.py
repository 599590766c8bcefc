# echo_booking/health.py
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
def root():
    return "Echo Flow Booking API OK"


@router.get("/health")
def health():
    return {"ok": True}
