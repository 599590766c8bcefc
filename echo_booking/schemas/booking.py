from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Vapi tools send camelCase for some payloads and snake_case for others;
# every request model accepts both.


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FindSlotsRequest(_Request):
    start: Optional[str] = Field(default=None, alias="startDateTimeISO")
    end: Optional[str] = Field(default=None, alias="endDateTimeISO")
    slot_duration_min: Optional[int] = Field(default=30, alias="slotDurationMin")


class SlotModel(BaseModel):
    start: str
    end: str
    timezone: str


class FindSlotsResponse(BaseModel):
    success: bool = True
    slots: List[SlotModel]


class BookingRequest(_Request):
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    customer_phone: Optional[str] = Field(default=None, alias="customerPhone")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    service: Optional[str] = None
    requested_start: Optional[str] = Field(default=None, alias="requestedStart")
    duration_minutes: Optional[int] = Field(default=30, alias="durationMinutes")
    notes: Optional[str] = None


class BookingResponse(BaseModel):
    success: bool = True
    event_id: str
    start_time: str
    end_time: str
    timezone: str


class RescheduleRequest(_Request):
    appointment_id: Optional[str] = Field(default=None, alias="appointmentId")
    new_start: Optional[str] = Field(default=None, alias="newStartDateTimeISO")
    duration_minutes: Optional[int] = Field(default=None, alias="durationMinutes")
    notes: Optional[str] = None


class CancelRequest(_Request):
    appointment_id: Optional[str] = Field(default=None, alias="appointmentId")
    reason: Optional[str] = None


class SendMessageRequest(_Request):
    channel: Optional[str] = None
    to: Optional[str] = None
    message: Optional[str] = None
    subject: Optional[str] = None


class SuccessResponse(BaseModel):
    success: bool = True


class HandoffResponse(BaseModel):
    success: bool = True
    transfer_to: Optional[str] = None
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: Optional[str] = None
