from __future__ import annotations

import logging
from datetime import datetime

from alarm_engine.models import AlarmEvent, AlarmRule
from alarm_engine.templates import default_dashboard_message, render_message
from shared.metrics import alarm_events_created_total

logger = logging.getLogger(__name__)


class AlarmEventRecorder:
    """Persists one occurrence with its rendered dashboard message."""

    def __init__(self, event_store, directory):
        self.event_store = event_store
        self.directory = directory

    async def record(
        self,
        rule: AlarmRule,
        device_id: str,
        value: float,
        triggered_at: datetime,
    ) -> AlarmEvent:
        device = await self.directory.get_device(device_id)
        message = render_message(
            rule.custom_dashboard_message,
            default_dashboard_message(rule, value),
            rule=rule,
            device=device,
            severity=rule.severity,
            triggered_at=triggered_at,
            value=value,
        )
        event = await self.event_store.create_event(
            rule,
            device_id,
            value,
            message,
            triggered_at,
            device=device,
        )
        alarm_events_created_total.labels(severity=rule.severity).inc()
        logger.info(
            "alarm_event_recorded",
            extra={"event_id": event.id, "rule_id": rule.id, "device_id": device_id},
        )
        return event
