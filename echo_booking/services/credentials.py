"""Google OAuth token persistence.

The store holds exactly one credential record. ``FileCredentialStore`` keeps
it as JSON on disk; anything implementing ``load``/``save`` (a database row,
a secret manager entry) can replace it.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, ValidationError, model_validator

logger = logging.getLogger(__name__)

EXPIRY_SKEW = timedelta(seconds=60)


class Credentials(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_expiry_date(cls, data: Any) -> Any:
        """Read ``expiry_date`` (epoch milliseconds) from googleapis token files."""
        if not isinstance(data, dict) or data.get("expiry") is not None:
            return data
        expiry_date = data.get("expiry_date")
        if isinstance(expiry_date, (int, float)) and not isinstance(expiry_date, bool):
            try:
                expiry = datetime.fromtimestamp(expiry_date / 1000, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as exc:
                raise ValueError("expiry_date is out of range") from exc
            data = dict(data, expiry=expiry)
        return data

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expiry is None:
            return False
        now = now or datetime.now(timezone.utc)
        expiry = self.expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return now >= expiry - EXPIRY_SKEW

    @classmethod
    def from_token_response(
        cls,
        payload: Dict[str, Any],
        *,
        previous: "Credentials | None" = None,
        now: datetime | None = None,
    ) -> "Credentials":
        """Build credentials from a Google token endpoint response.

        Refresh responses usually omit ``refresh_token``; the previous one is
        kept in that case.
        """
        now = now or datetime.now(timezone.utc)
        expiry = None
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expiry = now + timedelta(seconds=int(expires_in))
        refresh_token = payload.get("refresh_token") or (
            previous.refresh_token if previous else None
        )
        return cls(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            expiry=expiry,
            token_type=payload.get("token_type"),
            scope=payload.get("scope"),
        )


class CredentialStore(Protocol):
    def load(self) -> Optional[Credentials]: ...

    def save(self, credentials: Credentials) -> None: ...


class FileCredentialStore:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[Credentials]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return Credentials.model_validate(data)
        except (OSError, ValueError, ValidationError):
            logger.exception("Ignoring unreadable credential file %s", self._path)
            return None

    def save(self, credentials: Credentials) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            credentials.model_dump_json(indent=2, exclude_none=True), encoding="utf-8"
        )
        logger.info("Saved Google credentials to %s", self._path)


class MemoryCredentialStore:
    def __init__(self, credentials: Credentials | None = None) -> None:
        self._credentials = credentials

    def load(self) -> Optional[Credentials]:
        return self._credentials

    def save(self, credentials: Credentials) -> None:
        self._credentials = credentials
