from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import AsyncIterator, Dict, List, Tuple
from zoneinfo import ZoneInfo

LockKey = Tuple[str, date]


class SlotLocks:
    """Serializes check-then-write booking sections inside one process.

    Keys are (calendar id, local business day); an interval crossing midnight
    takes every day it touches, always in sorted order. A key's lock is
    dropped once no request holds or waits for it.
    """

    def __init__(self, tz: ZoneInfo) -> None:
        self._tz = tz
        self._locks: Dict[LockKey, asyncio.Lock] = {}
        self._users: Dict[LockKey, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def keys_for(self, calendar_id: str, start: datetime, end: datetime) -> List[LockKey]:
        first = start.astimezone(self._tz).date()
        last = (end - timedelta(microseconds=1)).astimezone(self._tz).date()
        keys: List[LockKey] = []
        day = first
        while day <= last:
            keys.append((calendar_id, day))
            day += timedelta(days=1)
        return keys

    @asynccontextmanager
    async def hold(self, calendar_id: str, start: datetime, end: datetime) -> AsyncIterator[None]:
        keys = self.keys_for(calendar_id, start, end)
        for key in keys:
            self._users[key] = self._users.get(key, 0) + 1
        locks = [self._locks.setdefault(key, asyncio.Lock()) for key in keys]
        acquired: List[asyncio.Lock] = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in keys:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    self._locks.pop(key, None)
