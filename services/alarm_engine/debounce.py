"""
In-process debounce state for duration-based alarm rules.

One DebounceEntry per (rule_id, device_id). The entry is only a timing hint:
losing it delays a trigger, it never records one. Each key has its own
asyncio.Lock so the gate's read-modify-write is atomic per key.
State is per process: duration rules assume one instance receives a
given device's telemetry.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from shared.metrics import alarm_debounce_entries, alarm_debounce_evicted_total

DEFAULT_MAX_AGE_SECONDS = 600

DebounceKey = tuple[str, str]


@dataclass
class DebounceEntry:
    value: float
    timestamp: datetime


def ensure_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


class DebounceStore:
    def __init__(self) -> None:
        self._entries: dict[DebounceKey, DebounceEntry] = {}
        self._locks: dict[DebounceKey, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: DebounceKey) -> bool:
        return key in self._entries

    def lock(self, key: DebounceKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def get(self, key: DebounceKey) -> Optional[DebounceEntry]:
        return self._entries.get(key)

    def put(self, key: DebounceKey, value: float, timestamp: datetime) -> DebounceEntry:
        entry = DebounceEntry(value=value, timestamp=ensure_utc(timestamp))
        self._entries[key] = entry
        alarm_debounce_entries.set(len(self._entries))
        return entry

    def delete(self, key: DebounceKey) -> None:
        self._entries.pop(key, None)
        alarm_debounce_entries.set(len(self._entries))

    def sweep(
        self,
        now: Optional[datetime] = None,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    ) -> int:
        """Delete entries older than max_age_seconds and idle locks left without an entry.

        Returns the number of entries removed.
        """
        now = ensure_utc(now or datetime.now(timezone.utc))
        cutoff = now - timedelta(seconds=max_age_seconds)
        stale = [key for key, entry in self._entries.items() if entry.timestamp < cutoff]
        for key in stale:
            del self._entries[key]
        # Matured keys were deleted by the gate but still hold a lock slot.
        for key in list(self._locks):
            if key not in self._entries and not self._locks[key].locked():
                del self._locks[key]
        if stale:
            alarm_debounce_evicted_total.inc(len(stale))
        alarm_debounce_entries.set(len(self._entries))
        return len(stale)
