"""
Alarm engine HTTP service.

Run with `python -m alarm_engine.service` from the services/ directory.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg
from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from alarm_engine.commands import DeviceCommandClient
from alarm_engine.engine import AlarmEngine
from alarm_engine.errors import RuleLoadError, RuleNotFoundError
from alarm_engine.metric_extractor import to_number
from alarm_engine.notifications import HttpSmsGateway, NotificationChannel, SmtpEmailSender
from alarm_engine.reactions import ReactionDispatcher
from alarm_engine.settings import AlarmEngineSettings
from alarm_engine.stores import DeviceDirectory, EventStore, RuleStore, ensure_schema
from shared.logging import configure_logging, log_exception, trace_id_var

logger = logging.getLogger(__name__)

SERVICE_NAME = "alarm_engine"

ENGINE_KEY = web.AppKey("engine", AlarmEngine)

COUNTERS = {
    "telemetry_requests": 0,
    "alarms_triggered": 0,
    "test_alarms": 0,
    "debounce_sweeps": 0,
    "last_sweep_at": None,
}


def parse_timestamp(raw: Any) -> datetime:
    if raw is None or raw == "":
        return datetime.now(timezone.utc)
    if not isinstance(raw, str):
        raise ValueError("timestamp must be an ISO-8601 string")
    ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _bad_request(message: str) -> web.Response:
    return web.json_response({"success": False, "message": message}, status=400)


async def _read_json(request: web.Request) -> Optional[dict]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


async def process_telemetry_handler(request: web.Request) -> web.Response:
    body = await _read_json(request)
    if body is None:
        return _bad_request("Request body must be a JSON object")

    device_id = body.get("deviceId")
    data = body.get("data")
    if not device_id or not isinstance(device_id, str):
        return _bad_request("deviceId is required")
    if not isinstance(data, dict):
        return _bad_request("data must be an object")
    try:
        timestamp = parse_timestamp(body.get("timestamp"))
    except ValueError as exc:
        return _bad_request(f"Invalid timestamp: {exc}")

    engine = request.app[ENGINE_KEY]
    COUNTERS["telemetry_requests"] += 1
    try:
        triggered = await engine.process_telemetry(device_id, timestamp, data)
    except RuleLoadError as exc:
        return web.json_response({"success": False, "message": str(exc)}, status=503)

    COUNTERS["alarms_triggered"] += len(triggered)
    return web.json_response(
        {
            "success": True,
            "triggeredAlarms": [result.to_dict() for result in triggered],
            "message": f"Processed telemetry for device {device_id}, triggered {len(triggered)} alarms",
        }
    )


async def trigger_test_handler(request: web.Request) -> web.Response:
    rule_id = request.match_info["rule_id"]
    body = await _read_json(request)
    if body is None:
        return _bad_request("Request body must be a JSON object")

    test_value = to_number(body.get("testValue"))
    if test_value is None:
        return _bad_request("testValue must be a number")

    engine = request.app[ENGINE_KEY]
    COUNTERS["test_alarms"] += 1
    try:
        result = await engine.trigger_test_alarm(rule_id, test_value)
    except RuleNotFoundError as exc:
        return web.json_response({"success": False, "message": str(exc)}, status=404)
    except RuleLoadError as exc:
        return web.json_response({"success": False, "message": str(exc)}, status=503)

    if result is None:
        message = f"No alarm triggered - condition not met for rule {rule_id}"
    else:
        message = f"Test alarm triggered successfully for rule {rule_id}"
    return web.json_response(
        {
            "success": result is not None,
            "triggeredAlarm": result.to_dict() if result else None,
            "message": message,
        }
    )


async def cleanup_cache_handler(request: web.Request) -> web.Response:
    removed = request.app[ENGINE_KEY].cleanup_debounce_cache()
    return web.json_response(
        {"success": True, "message": "Alarm debounce cache cleaned up", "removed": removed}
    )


async def health_handler(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    return web.json_response(
        {
            "status": "ok",
            "service": SERVICE_NAME,
            "counters": {**COUNTERS, "debounce_entries": len(engine.debounce)},
        }
    )


async def metrics_handler(_request: web.Request) -> web.Response:
    return web.Response(body=generate_latest(), content_type=CONTENT_TYPE_LATEST.split(";")[0])


def create_app(engine: AlarmEngine) -> web.Application:
    app = web.Application()
    app[ENGINE_KEY] = engine
    app.router.add_post("/alarms/process-telemetry", process_telemetry_handler)
    app.router.add_post("/alarms/rules/{rule_id}/trigger-test", trigger_test_handler)
    app.router.add_post("/alarms/cleanup-cache", cleanup_cache_handler)
    app.router.add_get("/health", health_handler)
    app.router.add_get("/metrics", metrics_handler)
    return app


def build_engine(pool: asyncpg.Pool, settings: AlarmEngineSettings) -> AlarmEngine:
    channel = NotificationChannel(
        sms=HttpSmsGateway(
            settings.sms_gateway_url,
            token=settings.sms_gateway_token,
            provider=settings.sms_provider_name,
            timeout=settings.sms_timeout_seconds,
        ),
        email=SmtpEmailSender(
            settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user or None,
            password=settings.smtp_password or None,
            use_tls=settings.smtp_tls,
            from_address=settings.smtp_from_address,
            from_name=settings.smtp_from_name,
        ),
    )
    event_store = EventStore(pool)
    dispatcher = ReactionDispatcher(
        channel,
        DeviceCommandClient(pool),
        event_store,
        requested_by=settings.command_requested_by,
    )
    return AlarmEngine(
        RuleStore(pool),
        event_store,
        DeviceDirectory(pool),
        dispatcher,
        duplicate_window_seconds=settings.duplicate_window_seconds,
        debounce_max_age_seconds=settings.debounce_max_age_seconds,
    )


async def run_debounce_sweep_tick(engine: AlarmEngine) -> None:
    engine.cleanup_debounce_cache()
    COUNTERS["debounce_sweeps"] += 1
    COUNTERS["last_sweep_at"] = datetime.now(timezone.utc).isoformat()


async def worker_loop(fn, engine: AlarmEngine, interval: int) -> None:
    while True:
        trace_token = trace_id_var.set(str(uuid.uuid4()))
        worker_name = getattr(fn, "__name__", "unknown")
        try:
            logger.debug("tick_start", extra={"tick": worker_name})
            tick_start = time.monotonic()
            await fn(engine)
            logger.debug(
                "tick_done",
                extra={"tick": worker_name, "duration_ms": round((time.monotonic() - tick_start) * 1000, 1)},
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_exception(logger, "worker_loop_failed", exc, context={"worker": worker_name})
        finally:
            trace_id_var.reset(trace_token)
        await asyncio.sleep(interval)


async def _init_db_connection(conn: asyncpg.Connection) -> None:
    await conn.execute("SET statement_timeout TO 30000")


async def get_pool(settings: AlarmEngineSettings) -> asyncpg.Pool:
    if settings.database_url:
        return await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.pg_pool_min,
            max_size=settings.pg_pool_max,
            command_timeout=30,
            init=_init_db_connection,
        )
    return await asyncpg.create_pool(
        host=settings.pg_host,
        port=settings.pg_port,
        database=settings.pg_db,
        user=settings.pg_user,
        password=settings.pg_pass,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        command_timeout=30,
        init=_init_db_connection,
    )


async def main() -> None:
    configure_logging(SERVICE_NAME)
    settings = AlarmEngineSettings.from_env()
    pool = await get_pool(settings)
    await ensure_schema(pool)
    engine = build_engine(pool, settings)

    runner = web.AppRunner(create_app(engine))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", settings.http_port)
    await site.start()
    logger.info(
        "alarm_engine_started",
        extra={
            "port": settings.http_port,
            "duplicate_window_seconds": settings.duplicate_window_seconds,
            "debounce_max_age_seconds": settings.debounce_max_age_seconds,
        },
    )

    try:
        await worker_loop(
            run_debounce_sweep_tick,
            engine,
            interval=settings.debounce_sweep_interval_seconds,
        )
    finally:
        await runner.cleanup()
        await pool.close()


if __name__ == "__main__":
    asyncio.run(main())
