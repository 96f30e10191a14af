"""
Occurrence gate: turns a condition match into "record an event" or not.

Rules with threshold_duration_seconds > 0 go through the debounce timer;
rules without one go through duplicate suppression against open events.
The gate is only consulted after the condition matched, so a false reading
never resets a pending timer.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from alarm_engine.debounce import DebounceStore, ensure_utc
from alarm_engine.models import AlarmRule, RuleStatus

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_WINDOW_SECONDS = 300


class OccurrenceGate:
    def __init__(
        self,
        debounce: DebounceStore,
        event_store,
        duplicate_window_seconds: int = DEFAULT_DUPLICATE_WINDOW_SECONDS,
    ):
        self.debounce = debounce
        self.event_store = event_store
        self.duplicate_window_seconds = duplicate_window_seconds

    async def check(
        self,
        rule: AlarmRule,
        device_id: str,
        value: float,
        timestamp: datetime,
    ) -> RuleStatus:
        if rule.uses_debounce:
            return await self._check_duration(rule, device_id, value, timestamp)
        return await self._check_duplicate(rule, device_id, timestamp)

    async def _check_duration(
        self,
        rule: AlarmRule,
        device_id: str,
        value: float,
        timestamp: datetime,
    ) -> RuleStatus:
        key = (rule.id, device_id)
        timestamp = ensure_utc(timestamp)
        async with self.debounce.lock(key):
            entry = self.debounce.get(key)
            if entry is None:
                self.debounce.put(key, value, timestamp)
                logger.debug(
                    "debounce_started",
                    extra={"rule_id": rule.id, "device_id": device_id, "value": value},
                )
                return RuleStatus.PENDING

            elapsed_ms = (timestamp - entry.timestamp).total_seconds() * 1000
            if elapsed_ms >= rule.threshold_duration_seconds * 1000:
                self.debounce.delete(key)
                return RuleStatus.TRIGGERED

            # Every sub-threshold match restarts the timer from this reading.
            self.debounce.put(key, value, timestamp)
            return RuleStatus.PENDING

    async def _check_duplicate(
        self,
        rule: AlarmRule,
        device_id: str,
        timestamp: datetime,
    ) -> RuleStatus:
        since = ensure_utc(timestamp) - timedelta(seconds=self.duplicate_window_seconds)
        existing = await self.event_store.find_open_event(rule.id, device_id, since)
        if existing is not None:
            logger.debug(
                "duplicate_suppressed",
                extra={"rule_id": rule.id, "device_id": device_id, "event_id": existing.id},
            )
            return RuleStatus.SUPPRESSED
        return RuleStatus.TRIGGERED
