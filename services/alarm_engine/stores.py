"""
PostgreSQL-backed rule store, event store and device directory.

All access goes through an asyncpg pool; each call acquires its own
connection so concurrent telemetry evaluations never share one.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional

import asyncpg

from alarm_engine.models import (
    AlarmEvent,
    AlarmReaction,
    AlarmRule,
    ClientContact,
    DeviceInfo,
)

logger = logging.getLogger(__name__)

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS clients (
  id            TEXT PRIMARY KEY,
  name          TEXT NOT NULL,
  phone_number1 TEXT NULL,
  phone_number2 TEXT NULL,
  phone_number3 TEXT NULL,
  created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS client_users (
  id         TEXT PRIMARY KEY,
  client_id  TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
  email      TEXT NULL,
  phone      TEXT NULL,
  full_name  TEXT NULL,
  created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS devices (
  id          TEXT PRIMARY KEY,
  device_name TEXT NULL,
  device_code TEXT NOT NULL,
  client_id   TEXT NULL REFERENCES clients(id) ON DELETE SET NULL,
  is_active   BOOLEAN NOT NULL DEFAULT true,
  created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS alarm_rules (
  id                         TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
  name                       TEXT NOT NULL,
  device_id                  TEXT NULL REFERENCES devices(id) ON DELETE CASCADE,
  metric_name                TEXT NOT NULL,
  condition                  TEXT NOT NULL
    CHECK (condition IN ('gt', 'lt', 'gte', 'lte', 'eq', 'neq', 'spike', 'drop')),
  threshold_value            DOUBLE PRECISION NOT NULL,
  threshold_duration_seconds INT NOT NULL DEFAULT 0 CHECK (threshold_duration_seconds >= 0),
  severity                   TEXT NOT NULL DEFAULT 'warning'
    CHECK (severity IN ('info', 'warning', 'critical', 'emergency')),
  enabled                    BOOLEAN NOT NULL DEFAULT true,
  custom_sms_message         TEXT NULL,
  custom_email_message       TEXT NULL,
  custom_dashboard_message   TEXT NULL,
  created_at                 TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS alarm_reactions (
  id              TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
  alarm_rule_id   TEXT NOT NULL REFERENCES alarm_rules(id) ON DELETE CASCADE,
  reaction_type   TEXT NOT NULL,
  enabled         BOOLEAN NOT NULL DEFAULT true,
  reaction_config JSONB NOT NULL DEFAULT '{}'::jsonb,
  created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS alarm_events (
  id              TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
  alarm_rule_id   TEXT NOT NULL REFERENCES alarm_rules(id) ON DELETE CASCADE,
  device_id       TEXT NOT NULL,
  severity        TEXT NOT NULL,
  triggered_value DOUBLE PRECISION NOT NULL,
  message         TEXT NOT NULL,
  triggered_at    TIMESTAMPTZ NOT NULL,
  acknowledged    BOOLEAN NOT NULL DEFAULT false,
  acknowledged_by TEXT NULL,
  acknowledged_at TIMESTAMPTZ NULL,
  resolved_at     TIMESTAMPTZ NULL
);

CREATE INDEX IF NOT EXISTS alarm_events_open_idx
ON alarm_events (alarm_rule_id, device_id, triggered_at)
WHERE resolved_at IS NULL;

CREATE TABLE IF NOT EXISTS control_commands (
  id           TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
  device_id    TEXT NOT NULL REFERENCES devices(id) ON DELETE CASCADE,
  command_type TEXT NOT NULL,
  payload      JSONB NOT NULL DEFAULT '{}'::jsonb,
  status       TEXT NOT NULL DEFAULT 'PENDING',
  requested_by TEXT NOT NULL,
  retry_count  INT NOT NULL DEFAULT 0,
  max_retries  INT NOT NULL DEFAULT 3,
  created_at   TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

_RULE_COLUMNS = """
    id, name, device_id, metric_name, condition, threshold_value,
    threshold_duration_seconds, severity, enabled,
    custom_sms_message, custom_email_message, custom_dashboard_message
"""

_REACTION_COLUMNS = "id, alarm_rule_id, reaction_type, enabled, reaction_config"

_EVENT_COLUMNS = """
    id, alarm_rule_id, device_id, severity, triggered_value, message, triggered_at,
    acknowledged, acknowledged_by, acknowledged_at, resolved_at
"""


async def ensure_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        for stmt in SCHEMA_DDL.strip().split(";"):
            s = stmt.strip()
            if s:
                await conn.execute(s + ";")


def _json_config(raw: Any) -> dict:
    if raw is None:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    return dict(raw) if isinstance(raw, dict) else {}


def row_to_reaction(row) -> AlarmReaction:
    return AlarmReaction(
        id=str(row["id"]),
        rule_id=str(row["alarm_rule_id"]),
        reaction_type=row["reaction_type"],
        enabled=bool(row["enabled"]),
        reaction_config=_json_config(row["reaction_config"]),
    )


def row_to_rule(row, reactions: Optional[list[AlarmReaction]] = None) -> AlarmRule:
    return AlarmRule(
        id=str(row["id"]),
        name=row["name"],
        device_id=row["device_id"],
        metric_name=row["metric_name"],
        condition=row["condition"],
        threshold_value=float(row["threshold_value"]),
        threshold_duration_seconds=int(row["threshold_duration_seconds"] or 0),
        severity=row["severity"],
        enabled=bool(row["enabled"]),
        custom_sms_message=row["custom_sms_message"],
        custom_email_message=row["custom_email_message"],
        custom_dashboard_message=row["custom_dashboard_message"],
        reactions=reactions or [],
    )


def row_to_event(row, rule: Optional[AlarmRule] = None, device: Optional[DeviceInfo] = None) -> AlarmEvent:
    return AlarmEvent(
        id=str(row["id"]),
        rule_id=str(row["alarm_rule_id"]),
        device_id=row["device_id"],
        severity=row["severity"],
        triggered_value=float(row["triggered_value"]),
        message=row["message"],
        triggered_at=row["triggered_at"],
        acknowledged=bool(row["acknowledged"]),
        acknowledged_by=row["acknowledged_by"],
        acknowledged_at=row["acknowledged_at"],
        resolved_at=row["resolved_at"],
        rule=rule,
        device=device,
    )


class RuleStore:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def find_active_rules(self, device_id: str) -> list[AlarmRule]:
        """Enabled rules scoped to this device plus global rules, enabled reactions attached."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_RULE_COLUMNS}
                FROM alarm_rules
                WHERE enabled = true
                  AND (device_id = $1 OR device_id IS NULL)
                ORDER BY created_at ASC, id ASC
                """,
                device_id,
            )
            if not rows:
                return []
            reaction_rows = await conn.fetch(
                f"""
                SELECT {_REACTION_COLUMNS}
                FROM alarm_reactions
                WHERE alarm_rule_id = ANY($1::text[])
                  AND enabled = true
                ORDER BY created_at ASC, id ASC
                """,
                [str(r["id"]) for r in rows],
            )

        by_rule: dict[str, list[AlarmReaction]] = {}
        for r in reaction_rows:
            reaction = row_to_reaction(r)
            by_rule.setdefault(reaction.rule_id, []).append(reaction)
        return [row_to_rule(r, by_rule.get(str(r["id"]), [])) for r in rows]

    async def find_rule(self, rule_id: str) -> Optional[AlarmRule]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_RULE_COLUMNS} FROM alarm_rules WHERE id = $1",
                rule_id,
            )
            if row is None:
                return None
            reaction_rows = await conn.fetch(
                f"""
                SELECT {_REACTION_COLUMNS}
                FROM alarm_reactions
                WHERE alarm_rule_id = $1
                ORDER BY created_at ASC, id ASC
                """,
                rule_id,
            )
        return row_to_rule(row, [row_to_reaction(r) for r in reaction_rows])


class EventStore:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def find_open_event(
        self,
        rule_id: str,
        device_id: str,
        since: datetime,
    ) -> Optional[AlarmEvent]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_EVENT_COLUMNS}
                FROM alarm_events
                WHERE alarm_rule_id = $1
                  AND device_id = $2
                  AND resolved_at IS NULL
                  AND triggered_at >= $3
                ORDER BY triggered_at DESC
                LIMIT 1
                """,
                rule_id,
                device_id,
                since,
            )
        return row_to_event(row) if row else None

    async def create_event(
        self,
        rule: AlarmRule,
        device_id: str,
        triggered_value: float,
        message: str,
        triggered_at: datetime,
        device: Optional[DeviceInfo] = None,
    ) -> AlarmEvent:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO alarm_events
                    (alarm_rule_id, device_id, severity, triggered_value, message, triggered_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING {_EVENT_COLUMNS}
                """,
                rule.id,
                device_id,
                rule.severity,
                triggered_value,
                message,
                triggered_at,
            )
        return row_to_event(row, rule=rule, device=device)

    async def append_to_message(self, event_id: str, suffix: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE alarm_events SET message = message || $2 WHERE id = $1",
                event_id,
                suffix,
            )


class DeviceDirectory:
    """Resolves device -> client -> phone numbers and primary user."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_device(self, device_id: str) -> Optional[DeviceInfo]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT d.id, d.device_name, d.device_code,
                       c.id AS client_id, c.name AS client_name,
                       c.phone_number1, c.phone_number2, c.phone_number3,
                       u.id AS user_id, u.email AS user_email, u.full_name AS user_name
                FROM devices d
                LEFT JOIN clients c ON c.id = d.client_id
                LEFT JOIN LATERAL (
                    SELECT id, email, full_name
                    FROM client_users
                    WHERE client_id = c.id
                    ORDER BY created_at ASC, id ASC
                    LIMIT 1
                ) u ON true
                WHERE d.id = $1
                """,
                device_id,
            )
        if row is None:
            return None
        return row_to_device(row)


def client_phone_numbers(*numbers: Optional[str]) -> list[str]:
    seen: list[str] = []
    for number in numbers:
        value = (number or "").strip()
        if value and value not in seen:
            seen.append(value)
    return seen


def row_to_device(row) -> DeviceInfo:
    client = None
    if row["client_id"] is not None:
        client = ClientContact(
            id=str(row["client_id"]),
            name=row["client_name"],
            phone_numbers=client_phone_numbers(
                row["phone_number1"], row["phone_number2"], row["phone_number3"]
            ),
            primary_user_id=row["user_id"],
            primary_user_email=row["user_email"],
            primary_user_name=row["user_name"],
        )
    return DeviceInfo(
        id=str(row["id"]),
        device_name=row["device_name"],
        device_code=row["device_code"],
        client=client,
    )
