"""
Queue device commands raised by alarm reactions.

Commands land in control_commands as PENDING; the control worker picks them
up and publishes them to the device.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg

from alarm_engine.errors import DeviceNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

# Legacy command names accepted in reaction configs -> canonical command type.
COMMAND_TYPE_ALIASES: dict[str, str] = {
    "stop": "shutdown",
    "off": "shutdown",
    "turn_off": "shutdown",
    "start": "turn_on",
    "on": "turn_on",
    "restart": "reboot",
}


def normalize_command_type(command_type: str) -> str:
    key = command_type.strip()
    return COMMAND_TYPE_ALIASES.get(key.lower(), key)


class DeviceCommandClient:
    def __init__(self, pool: asyncpg.Pool, max_retries: int = DEFAULT_MAX_RETRIES):
        self.pool = pool
        self.max_retries = max_retries

    async def enqueue_command(
        self,
        device_id: str,
        command_type: str,
        reason: str,
        payload: Optional[dict[str, Any]] = None,
        requested_by: str = "system",
    ) -> str:
        """Insert a PENDING command for the device and return its id."""
        command_type = normalize_command_type(command_type)
        body = {
            **(payload or {}),
            "action": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        async with self.pool.acquire() as conn:
            device = await conn.fetchrow(
                "SELECT id, device_code FROM devices WHERE id = $1",
                device_id,
            )
            if device is None:
                raise DeviceNotFoundError(device_id)
            command_id = await conn.fetchval(
                """
                INSERT INTO control_commands
                    (device_id, command_type, payload, status, requested_by, max_retries)
                VALUES ($1, $2, $3::jsonb, 'PENDING', $4, $5)
                RETURNING id
                """,
                device_id,
                command_type,
                json.dumps(body, default=str),
                requested_by,
                self.max_retries,
            )

        logger.info(
            "device_command_queued",
            extra={
                "device_id": device_id,
                "device_code": device["device_code"],
                "command_type": command_type,
                "command_id": str(command_id),
            },
        )
        return str(command_id)
