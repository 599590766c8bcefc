from fastapi import APIRouter, Depends, Form
from fastapi.responses import PlainTextResponse

from echo_booking.config import Settings, get_settings
from echo_booking.services.inbound import reply_for

router = APIRouter()


@router.post("/inbound", response_class=PlainTextResponse)
async def inbound_sms(
    body: str = Form(default="", alias="Body"),
    settings: Settings = Depends(get_settings),
):
    return reply_for(
        body,
        business_name=settings.business_name,
        support_email=settings.support_email,
    )
