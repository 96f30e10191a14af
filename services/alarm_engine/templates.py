"""
Message templates for alarm events and notifications.

Operators write templates with {token} placeholders; every token in
TEMPLATE_TOKENS always has a value, so anything else stays literal text.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from alarm_engine.conditions import condition_text
from alarm_engine.models import AlarmEvent, AlarmRule, DeviceInfo, severity_color

TEMPLATE_TOKENS = (
    "deviceName",
    "deviceId",
    "ruleName",
    "metricName",
    "value",
    "threshold",
    "condition",
    "severity",
    "time",
    "clientName",
)

EMAIL_SUBJECT_TEMPLATE = "LifeBox Alert: {rule_name}"

DEFAULT_EMAIL_HTML = """
<div style="font-family: Arial, sans-serif; max-width: 600px;">
  <h2 style="color: #d32f2f;">Alarm Alert</h2>
  <div style="background: #f5f5f5; padding: 15px; border-left: 4px solid #d32f2f;">
    <p><strong>Device:</strong> {device_name}</p>
    <p><strong>Alarm:</strong> {rule_name}</p>
    <p><strong>Message:</strong> {message}</p>
    <p><strong>Severity:</strong> <span style="color: {color}; text-transform: uppercase;">{severity}</span></p>
    <p><strong>Time:</strong> {time}</p>
  </div>
  <p style="margin-top: 20px; color: #666;">
    Please check your LifeBox dashboard for more details and to acknowledge this alarm.
  </p>
</div>
"""


def format_number(value: float | int | None) -> str:
    """Render numbers the way operators type them: 105, not 105.0."""
    if value is None:
        return "0"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def format_time(ts: Optional[datetime]) -> str:
    """Locale-style timestamp, e.g. '3/7/2025, 2:05:09 PM'."""
    ts = ts or datetime.now()
    hour = ts.hour % 12 or 12
    suffix = "AM" if ts.hour < 12 else "PM"
    return f"{ts.month}/{ts.day}/{ts.year}, {hour}:{ts.minute:02d}:{ts.second:02d} {suffix}"


def _rule_name(event: AlarmEvent) -> str:
    return event.rule.name if event.rule else "Alarm Rule"


def default_dashboard_message(rule: AlarmRule, value: float) -> str:
    return (
        f"{rule.name}: {rule.metric_name} = {format_number(value)} "
        f"(threshold: {format_number(rule.threshold_value)})"
    )


def default_sms_message(event: AlarmEvent) -> str:
    device_name = event.device.display_name if event.device else None
    return f"LIFEBOX ALERT: {event.message} on {device_name or 'Unknown Device'}"


def default_email_html(event: AlarmEvent) -> str:
    device_name = event.device.display_name if event.device else None
    return DEFAULT_EMAIL_HTML.format(
        device_name=device_name or "Unknown Device",
        rule_name=_rule_name(event),
        message=event.message,
        color=severity_color(event.severity),
        severity=event.severity,
        time=format_time(event.triggered_at),
    )


def email_subject(event: AlarmEvent) -> str:
    return EMAIL_SUBJECT_TEMPLATE.format(rule_name=_rule_name(event))


def template_variables(
    rule: Optional[AlarmRule],
    device: Optional[DeviceInfo],
    severity: Optional[str],
    triggered_at: Optional[datetime],
    value: float,
) -> dict[str, str]:
    client = device.client if device else None
    return {
        "deviceName": (device.display_name if device else None) or "Unknown Device",
        "deviceId": (device.id if device else None) or "N/A",
        "ruleName": (rule.name if rule else None) or "Alarm Rule",
        "metricName": (rule.metric_name if rule else None) or "metric",
        "value": format_number(value),
        "threshold": format_number(rule.threshold_value if rule else None),
        "condition": condition_text(rule.condition if rule else None),
        "severity": severity.upper() if severity else "UNKNOWN",
        "time": format_time(triggered_at),
        "clientName": (client.name if client else None) or "Unknown Client",
    }


def render_message(
    template: Optional[str],
    fallback: str,
    *,
    rule: Optional[AlarmRule],
    device: Optional[DeviceInfo],
    severity: Optional[str],
    triggered_at: Optional[datetime],
    value: float,
) -> str:
    if not template:
        return fallback
    message = template
    for key, rendered in template_variables(rule, device, severity, triggered_at, value).items():
        message = message.replace("{" + key + "}", rendered)
    return message


def render_for_event(template: Optional[str], event: AlarmEvent, fallback: str) -> str:
    return render_message(
        template,
        fallback,
        rule=event.rule,
        device=event.device,
        severity=event.severity,
        triggered_at=event.triggered_at,
        value=event.triggered_value or 0,
    )
