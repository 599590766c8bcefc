class ServiceError(Exception):
    """Base exception for service layer failures."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class DownstreamServiceError(ServiceError):
    """Raised when an external service returns an error response."""

    def __init__(self, message: str, status_code: int | None = None, *, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.upstream_status = status_code


class MissingFieldsError(ServiceError):
    code = "missing_fields"
    status_code = 400


class OAuthNotConnectedError(ServiceError):
    """No usable Google token; an operator has to re-authorize."""

    code = "oauth_not_connected"
    status_code = 400

    def __init__(
        self,
        message: str = "Open /oauth/google/start and allow access first.",
        *,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)


class SlotUnavailableError(ServiceError):
    code = "slot_unavailable"
    status_code = 409


class AppointmentNotFoundError(ServiceError):
    code = "appointment_not_found"
    status_code = 404


class InvalidChannelError(ServiceError):
    code = "invalid_channel"
    status_code = 400


class ChannelNotConfiguredError(ServiceError):
    status_code = 400

    def __init__(self, channel: str, *, cause: Exception | None = None):
        super().__init__(f"{channel} sending is not configured", cause=cause)
        self.channel = channel
        self.code = f"{channel}_not_configured"
