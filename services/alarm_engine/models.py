"""Typed records flowing through the alarm pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Condition(str, Enum):
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"
    SPIKE = "spike"
    DROP = "drop"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


SEVERITY_PRIORITY = {
    Severity.INFO.value: "normal",
    Severity.WARNING.value: "normal",
    Severity.CRITICAL.value: "high",
    Severity.EMERGENCY.value: "critical",
}

SEVERITY_COLOR = {
    Severity.INFO.value: "#2196f3",
    Severity.WARNING.value: "#ff9800",
    Severity.CRITICAL.value: "#f44336",
    Severity.EMERGENCY.value: "#d32f2f",
}


def severity_priority(severity: str | None) -> str:
    """Delivery priority handed to the SMS provider."""
    return SEVERITY_PRIORITY.get(severity or "", "normal")


def severity_color(severity: str | None) -> str:
    return SEVERITY_COLOR.get(severity or "", "#666")


class ReactionType(str, Enum):
    DASHBOARD = "dashboard"
    SMS = "sms"
    EMAIL = "email"
    SHUTDOWN = "shutdown"
    COMMAND = "command"


class RuleStatus(str, Enum):
    SKIPPED = "skipped"          # metric missing or non-numeric
    NOT_MATCHED = "not_matched"  # condition false
    PENDING = "pending"          # debounce timer running
    SUPPRESSED = "suppressed"    # open event inside the duplicate window
    TRIGGERED = "triggered"
    FAILED = "failed"


@dataclass
class AlarmReaction:
    id: str
    rule_id: str
    reaction_type: str
    enabled: bool = True
    reaction_config: dict[str, Any] = field(default_factory=dict)


@dataclass
class AlarmRule:
    id: str
    name: str
    metric_name: str
    condition: str
    threshold_value: float
    severity: str = Severity.WARNING.value
    threshold_duration_seconds: int = 0
    enabled: bool = True
    device_id: Optional[str] = None
    custom_sms_message: Optional[str] = None
    custom_email_message: Optional[str] = None
    custom_dashboard_message: Optional[str] = None
    reactions: list[AlarmReaction] = field(default_factory=list)

    @property
    def is_global(self) -> bool:
        return self.device_id is None

    @property
    def uses_debounce(self) -> bool:
        return (self.threshold_duration_seconds or 0) > 0


@dataclass
class ClientContact:
    id: str
    name: Optional[str] = None
    phone_numbers: list[str] = field(default_factory=list)
    primary_user_id: Optional[str] = None
    primary_user_email: Optional[str] = None
    primary_user_name: Optional[str] = None


@dataclass
class DeviceInfo:
    id: str
    device_name: Optional[str] = None
    device_code: Optional[str] = None
    client: Optional[ClientContact] = None

    @property
    def display_name(self) -> Optional[str]:
        return self.device_name or self.device_code


@dataclass
class AlarmEvent:
    """One recorded occurrence; `resolved_at is None` marks it open."""

    id: str
    rule_id: str
    device_id: str
    severity: str
    triggered_value: float
    message: str
    triggered_at: datetime
    rule: Optional[AlarmRule] = None
    device: Optional[DeviceInfo] = None
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None


@dataclass
class TelemetryDataPoint:
    device_id: str
    timestamp: datetime
    data: dict[str, Any]


@dataclass(frozen=True)
class AlarmTriggerResult:
    rule_id: str
    rule_name: str
    device_id: str
    metric_name: str
    triggered_value: float
    threshold_value: float
    condition: str
    severity: str
    event_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "deviceId": self.device_id,
            "metricName": self.metric_name,
            "triggeredValue": self.triggered_value,
            "thresholdValue": self.threshold_value,
            "condition": self.condition,
            "severity": self.severity,
            "eventId": self.event_id,
        }


@dataclass
class ReactionOutcome:
    reaction_id: str
    reaction_type: str
    ok: bool
    error: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class RuleOutcome:
    rule_id: str
    status: RuleStatus
    error: Optional[str] = None
    result: Optional[AlarmTriggerResult] = None
    reactions: list[ReactionOutcome] = field(default_factory=list)


@dataclass
class EvaluationReport:
    device_id: str
    timestamp: datetime
    outcomes: list[RuleOutcome] = field(default_factory=list)

    @property
    def triggered(self) -> list[AlarmTriggerResult]:
        return [o.result for o in self.outcomes if o.result is not None]

    @property
    def failed(self) -> list[RuleOutcome]:
        return [o for o in self.outcomes if o.status is RuleStatus.FAILED]
