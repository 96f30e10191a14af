"""
Alarm rule evaluation pipeline.

For every telemetry point: load the device's applicable rules, extract the
metric, evaluate the condition, pass the occurrence gate, record the event
and dispatch reactions. Each rule runs in its own failure boundary.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from alarm_engine.conditions import evaluate_condition
from alarm_engine.debounce import DEFAULT_MAX_AGE_SECONDS, DebounceStore, ensure_utc
from alarm_engine.errors import RuleLoadError, RuleNotFoundError
from alarm_engine.gate import DEFAULT_DUPLICATE_WINDOW_SECONDS, OccurrenceGate
from alarm_engine.metric_extractor import extract_metric_value
from alarm_engine.models import (
    AlarmRule,
    AlarmTriggerResult,
    EvaluationReport,
    RuleOutcome,
    RuleStatus,
    TelemetryDataPoint,
)
from alarm_engine.recorder import AlarmEventRecorder
from shared.logging import log_event, log_exception, trace_context, trace_id_var
from shared.metrics import (
    alarm_evaluation_duration_seconds,
    alarm_rule_errors_total,
    alarm_rule_load_errors_total,
    alarm_rules_evaluated_total,
)

logger = logging.getLogger(__name__)

TEST_DEVICE_ID = "test-device"


class AlarmEngine:
    def __init__(
        self,
        rule_store,
        event_store,
        directory,
        dispatcher,
        debounce: Optional[DebounceStore] = None,
        duplicate_window_seconds: int = DEFAULT_DUPLICATE_WINDOW_SECONDS,
        debounce_max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    ):
        self.rule_store = rule_store
        self.dispatcher = dispatcher
        self.debounce = debounce if debounce is not None else DebounceStore()
        self.debounce_max_age_seconds = debounce_max_age_seconds
        self.gate = OccurrenceGate(self.debounce, event_store, duplicate_window_seconds)
        self.recorder = AlarmEventRecorder(event_store, directory)

    async def evaluate_telemetry(self, point: TelemetryDataPoint) -> EvaluationReport:
        """Run every applicable rule against one telemetry point."""
        with trace_context(trace_id_var.get("") or None):
            started = time.monotonic()
            timestamp = ensure_utc(point.timestamp)
            try:
                rules = await self.rule_store.find_active_rules(point.device_id)
            except Exception as exc:
                alarm_rule_load_errors_total.inc()
                log_exception(
                    logger,
                    "alarm_rules_load_failed",
                    exc,
                    context={"device_id": point.device_id},
                )
                raise RuleLoadError(point.device_id, exc) from exc

            report = EvaluationReport(device_id=point.device_id, timestamp=timestamp)
            for rule in rules:
                outcome = await self._evaluate_rule(rule, point.device_id, timestamp, point.data)
                alarm_rules_evaluated_total.labels(status=outcome.status.value).inc()
                report.outcomes.append(outcome)

            alarm_evaluation_duration_seconds.observe(time.monotonic() - started)
            logger.debug(
                "telemetry_evaluated",
                extra={
                    "device_id": point.device_id,
                    "rules": len(rules),
                    "triggered": len(report.triggered),
                    "failed": len(report.failed),
                },
            )
            return report

    async def _evaluate_rule(
        self,
        rule: AlarmRule,
        device_id: str,
        timestamp: datetime,
        data: dict[str, Any],
    ) -> RuleOutcome:
        try:
            value = extract_metric_value(data, rule.metric_name)
            if value is None:
                return RuleOutcome(rule_id=rule.id, status=RuleStatus.SKIPPED)

            if not evaluate_condition(value, rule.condition, rule.threshold_value):
                return RuleOutcome(rule_id=rule.id, status=RuleStatus.NOT_MATCHED)

            status = await self.gate.check(rule, device_id, value, timestamp)
            if status is not RuleStatus.TRIGGERED:
                return RuleOutcome(rule_id=rule.id, status=status)

            event = await self.recorder.record(rule, device_id, value, timestamp)
            reactions = await self.dispatcher.dispatch(rule, event)
        except Exception as exc:
            alarm_rule_errors_total.inc()
            log_exception(
                logger,
                "alarm_rule_failed",
                exc,
                context={"rule_id": rule.id, "device_id": device_id},
            )
            return RuleOutcome(
                rule_id=rule.id,
                status=RuleStatus.FAILED,
                error=str(exc) or type(exc).__name__,
            )

        result = AlarmTriggerResult(
            rule_id=rule.id,
            rule_name=rule.name,
            device_id=device_id,
            metric_name=rule.metric_name,
            triggered_value=value,
            threshold_value=rule.threshold_value,
            condition=rule.condition,
            severity=rule.severity,
            event_id=event.id,
        )
        log_event(
            logger,
            "alarm_triggered",
            level="WARNING",
            rule_id=rule.id,
            rule_name=rule.name,
            device_id=device_id,
            metric_name=rule.metric_name,
            value=value,
            threshold=rule.threshold_value,
            severity=rule.severity,
            event_id=event.id,
        )
        return RuleOutcome(
            rule_id=rule.id,
            status=RuleStatus.TRIGGERED,
            result=result,
            reactions=reactions,
        )

    async def process_telemetry(
        self,
        device_id: str,
        timestamp: datetime,
        data: dict[str, Any],
    ) -> list[AlarmTriggerResult]:
        report = await self.evaluate_telemetry(
            TelemetryDataPoint(device_id=device_id, timestamp=timestamp, data=data)
        )
        return report.triggered

    async def process_telemetry_batch(
        self,
        points: Iterable[TelemetryDataPoint],
    ) -> list[AlarmTriggerResult]:
        """Evaluate points in order; a rule-load failure for one point does not stop the rest."""
        triggered: list[AlarmTriggerResult] = []
        for point in points:
            try:
                report = await self.evaluate_telemetry(point)
            except RuleLoadError:
                continue
            triggered.extend(report.triggered)
        return triggered

    async def trigger_test_alarm(
        self,
        rule_id: str,
        test_value: float,
    ) -> Optional[AlarmTriggerResult]:
        """Feed a synthetic reading for the rule's metric through the full pipeline."""
        rule = await self.rule_store.find_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)

        device_id = rule.device_id or TEST_DEVICE_ID
        logger.info(
            "test_alarm_requested",
            extra={"rule_id": rule_id, "device_id": device_id, "test_value": test_value},
        )
        results = await self.process_telemetry(
            device_id,
            datetime.now(timezone.utc),
            {rule.metric_name: test_value},
        )
        return results[0] if results else None

    def cleanup_debounce_cache(self, now: Optional[datetime] = None) -> int:
        removed = self.debounce.sweep(now=now, max_age_seconds=self.debounce_max_age_seconds)
        logger.info(
            "debounce_cache_cleaned",
            extra={"removed": removed, "remaining": len(self.debounce)},
        )
        return removed
