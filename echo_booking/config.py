from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(default="Echo Flow Booking API")
    port: int = Field(default=8080)
    log_level: str = Field(default="INFO")
    http_timeout: float = Field(default=10.0)

    # Google Calendar
    gcal_client_id: str | None = Field(default=None)
    gcal_client_secret: str | None = Field(default=None)
    gcal_redirect_uri: str | None = Field(default=None)
    gcal_calendar_id: str = Field(default="primary")
    tokens_path: str = Field(default="/data/tokens.google.json")

    # Business
    business_name: str = Field(default="Echo Flow")
    business_timezone: str = Field(default="America/New_York")
    event_location: str = Field(default="(online demo)")
    default_service: str = Field(default="Setup Demo")
    support_email: str = Field(default="laith@echoflw.com")

    # Twilio
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_from_number: str | None = Field(default=None)
    owner_sms: str | None = Field(default=None)

    # SendGrid
    sendgrid_api_key: str | None = Field(default=None)
    sendgrid_from_email: str | None = Field(default=None)

    # Vapi tool gate and fallback contact
    app_signing_secret: str | None = Field(default=None)
    handoff_phone: str | None = Field(default=None)
    handoff_message: str = Field(
        default="Transferring you to a member of our team."
    )

    model_config = SettingsConfigDict(case_sensitive=False)

    @field_validator("business_timezone")
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value!r}") from exc
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.business_timezone)

    @property
    def sms_enabled(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_from_number
        )

    @property
    def email_enabled(self) -> bool:
        return bool(self.sendgrid_api_key and self.sendgrid_from_email)


SECRET_FIELDS = {
    "gcal_client_secret",
    "twilio_auth_token",
    "sendgrid_api_key",
    "app_signing_secret",
}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
