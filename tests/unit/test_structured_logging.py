import io
import json
import logging

import pytest

from shared.logging import (
    JsonFormatter,
    configure_logging,
    log_event,
    log_exception,
    trace_context,
    trace_id_var,
)

pytestmark = [pytest.mark.unit]


def make_test_logger(service: str) -> tuple[logging.Logger, io.StringIO]:
    """Create a logger with JsonFormatter that writes to a StringIO buffer."""
    buf = io.StringIO()
    handler = logging.StreamHandler(buf)
    handler.setFormatter(JsonFormatter(service))
    logger = logging.getLogger(f"test_{service}_{id(buf)}")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, buf


def get_log_line(buf: io.StringIO) -> dict:
    """Parse the last JSON log line from buffer."""
    buf.seek(0)
    lines = [line.strip() for line in buf.readlines() if line.strip()]
    return json.loads(lines[-1])


def test_json_formatter_produces_valid_json():
    logger, buf = make_test_logger("alarm-engine")
    logger.info("alarm_triggered")
    line = get_log_line(buf)
    assert line["msg"] == "alarm_triggered"
    assert line["level"] == "INFO"
    assert line["service"] == "alarm-engine"
    assert line["ts"].endswith("Z")


def test_json_formatter_includes_extra_fields():
    logger, buf = make_test_logger("alarm-engine")
    logger.warning("duplicate_suppressed", extra={"rule_id": "r1", "device_id": "d1"})
    line = get_log_line(buf)
    assert line["level"] == "WARNING"
    assert line["rule_id"] == "r1"
    assert line["device_id"] == "d1"


def test_json_formatter_serializes_unknown_types():
    logger, buf = make_test_logger("alarm-engine")
    logger.info("evaluated", extra={"payload": {1, 2}})
    assert get_log_line(buf)["payload"] in ("{1, 2}", "{2, 1}")


def test_json_formatter_includes_traceback():
    logger, buf = make_test_logger("alarm-engine")
    try:
        raise KeyError("x")
    except KeyError:
        logger.exception("boom")
    assert "KeyError" in get_log_line(buf)["exc"]


def test_trace_context_sets_and_resets_trace_id():
    logger, buf = make_test_logger("alarm-engine")
    with trace_context("trace-abc") as trace_id:
        assert trace_id == "trace-abc"
        logger.info("inside")
        assert get_log_line(buf)["trace_id"] == "trace-abc"
    assert trace_id_var.get("") == ""


def test_trace_context_generates_id():
    with trace_context() as trace_id:
        assert len(trace_id) == 36
        assert trace_id_var.get() == trace_id


def test_log_exception_helper():
    logger, buf = make_test_logger("alarm-engine")
    try:
        raise ValueError("bad reading")
    except ValueError as exc:
        log_exception(logger, "alarm_rule_failed", exc, context={"rule_id": "r1"})
    line = get_log_line(buf)
    assert line["level"] == "ERROR"
    assert line["error_type"] == "ValueError"
    assert line["error"] == "bad reading"
    assert line["rule_id"] == "r1"
    assert "exc" not in line


def test_log_event_helper():
    logger, buf = make_test_logger("alarm-engine")
    log_event(logger, "alarm_triggered", level="WARNING", rule_id="r1", value=105.0)
    line = get_log_line(buf)
    assert line["level"] == "WARNING"
    assert line["value"] == 105.0


def test_configure_logging_installs_json_handler(monkeypatch):
    monkeypatch.setenv("SERVICE_NAME", "alarm-engine-test")
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure_logging("alarm_engine", level="debug")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        formatter = root.handlers[0].formatter
        assert isinstance(formatter, JsonFormatter)
        assert formatter.service == "alarm-engine-test"
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
