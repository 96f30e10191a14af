from datetime import datetime

import pytest

from alarm_engine.models import ClientContact
from alarm_engine.templates import (
    default_dashboard_message,
    default_email_html,
    default_sms_message,
    email_subject,
    format_number,
    format_time,
    render_for_event,
    render_message,
    template_variables,
)
from factories import T0, make_device, make_event, make_rule

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


async def test_tokens_are_substituted():
    rule = make_rule(threshold_value=100)
    device = make_device(device_name="Pump-A")
    rendered = render_message(
        "{deviceName} hit {value} > {threshold}",
        "fallback",
        rule=rule,
        device=device,
        severity="critical",
        triggered_at=T0,
        value=105,
    )
    assert rendered == "Pump-A hit 105 > 100"


async def test_missing_template_returns_fallback_verbatim():
    for template in (None, ""):
        rendered = render_message(
            template,
            "{deviceName} stays literal",
            rule=make_rule(),
            device=make_device(),
            severity="info",
            triggered_at=T0,
            value=1,
        )
        assert rendered == "{deviceName} stays literal"


async def test_every_token_and_repeats():
    rule = make_rule(name="Low Pressure", metric_name="pressure", condition="lte", threshold_value=2.5)
    device = make_device(id="dev-9", device_name=None, device_code="LB-009")
    rendered = render_message(
        "{deviceName}/{deviceId}/{ruleName}/{metricName}/{value}/{threshold}/"
        "{condition}/{severity}/{time}/{clientName}/{deviceName}/{unknown}",
        "",
        rule=rule,
        device=device,
        severity="warning",
        triggered_at=datetime(2025, 3, 7, 14, 5, 9),
        value=1.75,
    )
    assert rendered == (
        "LB-009/dev-9/Low Pressure/pressure/1.75/2.5/less than or equal to/WARNING/"
        "3/7/2025, 2:05:09 PM/Acme Farms/LB-009/{unknown}"
    )


async def test_defaults_without_device_or_severity():
    variables = template_variables(make_rule(), None, None, T0, 5)
    assert variables["deviceName"] == "Unknown Device"
    assert variables["deviceId"] == "N/A"
    assert variables["severity"] == "UNKNOWN"
    assert variables["clientName"] == "Unknown Client"


async def test_client_without_name_uses_default():
    device = make_device(client=ClientContact(id="c1"))
    assert template_variables(make_rule(), device, "info", T0, 1)["clientName"] == "Unknown Client"


async def test_format_number():
    assert format_number(105.0) == "105"
    assert format_number(105.5) == "105.5"
    assert format_number(-3) == "-3"
    assert format_number(None) == "0"


async def test_format_time_midnight_and_noon():
    assert format_time(datetime(2025, 1, 2, 0, 0, 0)) == "1/2/2025, 12:00:00 AM"
    assert format_time(datetime(2025, 1, 2, 12, 30, 1)) == "1/2/2025, 12:30:01 PM"


async def test_default_dashboard_message():
    rule = make_rule(threshold_value=30)
    assert default_dashboard_message(rule, 35.0) == "High Temperature: temperature = 35 (threshold: 30)"


async def test_default_sms_message_uses_device_display_name():
    event = make_event(device=make_device(device_name=None))
    assert default_sms_message(event) == (
        "LIFEBOX ALERT: High Temperature: temperature = 35 (threshold: 30) on LB-001"
    )
    assert default_sms_message(make_event()).endswith(" on Unknown Device")


async def test_email_subject_and_html():
    event = make_event(device=make_device())
    assert email_subject(event) == "LifeBox Alert: High Temperature"
    html = default_email_html(event)
    assert "Boiler Room" in html
    assert "#f44336" in html
    assert "3/7/2025, 2:00:00 PM" in html


async def test_render_for_event_uses_event_fields():
    event = make_event(device=make_device(), triggered_value=41.0)
    assert render_for_event("{ruleName} at {value} on {deviceName}", event, "x") == (
        "High Temperature at 41 on Boiler Room"
    )
