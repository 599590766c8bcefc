"""Service package public API definitions.

Implementations are imported lazily: the HTTP clients import
``echo_booking.services.exceptions`` and the booking service imports the
clients, so importing everything here eagerly would be circular.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "BookingService",
    "BusinessProfile",
    "FileCredentialStore",
    "MemoryCredentialStore",
    "NotificationDispatcher",
    "SlotLocks",
]

_SERVICE_MODULES = {
    "BookingService": "booking",
    "BusinessProfile": "booking",
    "FileCredentialStore": "credentials",
    "MemoryCredentialStore": "credentials",
    "NotificationDispatcher": "notifications",
    "SlotLocks": "locks",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .booking import BookingService as BookingService
    from .booking import BusinessProfile as BusinessProfile
    from .credentials import FileCredentialStore as FileCredentialStore
    from .credentials import MemoryCredentialStore as MemoryCredentialStore
    from .locks import SlotLocks as SlotLocks
    from .notifications import NotificationDispatcher as NotificationDispatcher
