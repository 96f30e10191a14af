from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.config import bool_env, float_env, int_env, optional_env, require_env


@dataclass(frozen=True)
class AlarmEngineSettings:
    database_url: Optional[str] = None
    pg_host: str = "iot-postgres"
    pg_port: int = 5432
    pg_db: str = "iotcloud"
    pg_user: str = "iot"
    pg_pass: str = ""
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    http_port: int = 8080
    duplicate_window_seconds: int = 300
    debounce_max_age_seconds: int = 600
    debounce_sweep_interval_seconds: int = 60
    sms_gateway_url: str = ""
    sms_gateway_token: str = ""
    sms_provider_name: str = "gateway"
    sms_timeout_seconds: float = 10.0
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_tls: bool = True
    smtp_from_address: str = "alerts@lifebox.local"
    smtp_from_name: str = "LifeBox Alerts"
    command_requested_by: str = "system"

    @classmethod
    def from_env(cls) -> "AlarmEngineSettings":
        database_url = optional_env("DATABASE_URL") or None
        return cls(
            database_url=database_url,
            pg_host=optional_env("PG_HOST", "iot-postgres"),
            pg_port=int_env("PG_PORT", 5432),
            pg_db=optional_env("PG_DB", "iotcloud"),
            pg_user=optional_env("PG_USER", "iot"),
            # The password is only optional when DATABASE_URL carries the credentials.
            pg_pass=optional_env("PG_PASS") if database_url else require_env("PG_PASS"),
            pg_pool_min=int_env("PG_POOL_MIN", 2),
            pg_pool_max=int_env("PG_POOL_MAX", 10),
            http_port=int_env("HTTP_PORT", 8080),
            duplicate_window_seconds=int_env("DUPLICATE_WINDOW_SECONDS", 300),
            debounce_max_age_seconds=int_env("DEBOUNCE_MAX_AGE_SECONDS", 600),
            debounce_sweep_interval_seconds=int_env("DEBOUNCE_SWEEP_INTERVAL_SECONDS", 60),
            sms_gateway_url=optional_env("SMS_GATEWAY_URL"),
            sms_gateway_token=optional_env("SMS_GATEWAY_TOKEN"),
            sms_provider_name=optional_env("SMS_PROVIDER_NAME", "gateway"),
            sms_timeout_seconds=float_env("SMS_TIMEOUT_SECONDS", 10.0),
            smtp_host=optional_env("SMTP_HOST"),
            smtp_port=int_env("SMTP_PORT", 587),
            smtp_user=optional_env("SMTP_USER"),
            smtp_password=optional_env("SMTP_PASSWORD"),
            smtp_tls=bool_env("SMTP_TLS", True),
            smtp_from_address=optional_env("SMTP_FROM_ADDRESS", "alerts@lifebox.local"),
            smtp_from_name=optional_env("SMTP_FROM_NAME", "LifeBox Alerts"),
            command_requested_by=optional_env("COMMAND_REQUESTED_BY", "system"),
        )
