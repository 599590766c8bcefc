from contextlib import asynccontextmanager
import hmac
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from echo_booking.config import SECRET_FIELDS, get_settings
from echo_booking.dependencies.services import (
    get_http_client_cached,
    get_notification_dispatcher_cached,
    reset_cached_clients,
)
from echo_booking.health import router as health_router
from echo_booking.schemas.booking import ErrorResponse
from echo_booking.tools.oauth import router as oauth_router
from echo_booking.tools.twilio import router as twilio_router
from echo_booking.tools.vapi import router as vapi_router

# Routes the voice assistant does not call; they never need x-app-secret.
OPEN_PATHS = {"/", "/health"}
OPEN_PREFIXES = ("/oauth/", "/twilio/")


def configure_logging() -> None:
    """Ensure application logs use the configured level."""
    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(level)

# Configure logging as soon as the module is loaded
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    # --- Startup Logic ---
    settings = get_settings()

    settings_snapshot = settings.model_dump(exclude=SECRET_FIELDS)
    logger.info("Application settings on startup: %s", settings_snapshot)

    notifier = get_notification_dispatcher_cached()
    logger.info(
        "Notification channels: sms=%s owner_sms=%s email=%s",
        notifier.sms_enabled,
        notifier.owner_sms_enabled,
        notifier.email_enabled,
    )
    if not settings.app_signing_secret:
        logger.warning("APP_SIGNING_SECRET is not set; Vapi routes are open")
    logger.info("Application startup complete.")

    try:
        yield  # The application is now running
    finally:
        # --- Shutdown Logic ---
        logger.info("Closing HTTP client.")
        await get_http_client_cached().aclose()
        reset_cached_clients()
        logger.info("Application shutdown complete.")


# --- Application Setup ---

settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    redirect_slashes=False,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def require_app_secret(request: Request, call_next):
    path = request.url.path
    if path in OPEN_PATHS or path.startswith(OPEN_PREFIXES):
        return await call_next(request)

    secret = get_settings().app_signing_secret
    if secret:
        supplied = request.headers.get("x-app-secret", "")
        if not hmac.compare_digest(supplied.encode(), secret.encode()):
            logger.warning("Rejected request to %s with a bad x-app-secret", path)
            return JSONResponse(status_code=401, content={"error": "unauthorized"})
    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("Invalid payload for %s: %s", request.url.path, exc.errors())
    body = ErrorResponse(error="missing_fields", message="Request body is invalid")
    return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))


# --- Include Routers ---

app.include_router(health_router)
app.include_router(oauth_router, prefix="/oauth")
app.include_router(twilio_router, prefix="/twilio")
app.include_router(vapi_router, prefix="/vapi")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("echo_booking.main:app", host="0.0.0.0", port=settings.port)
