"""Outbound SMS and email delivery for alarm reactions."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib
import httpx

from alarm_engine.errors import NotificationError
from shared.http_client import traced_client
from shared.metrics import notification_deliveries_total

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


@dataclass
class SmsResult:
    """Result of one SMS send attempt."""

    success: bool
    provider: Optional[str] = None
    reason: Optional[str] = None


class HttpSmsGateway:
    """Posts SMS messages to an HTTP gateway that fronts the carrier providers."""

    def __init__(
        self,
        url: str,
        token: str = "",
        provider: str = "gateway",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.token = token
        self.provider = provider
        self.timeout = timeout
        self.transport = transport

    async def send_sms(self, phone_number: str, message: str, priority: str = "normal") -> SmsResult:
        if not self.url:
            raise NotificationError("SMS gateway URL is not configured")

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        body = {"to": phone_number, "message": message, "priority": priority}
        try:
            async with traced_client(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(
                "sms_delivery_failed",
                extra={"phone": phone_number, "error": f"{type(exc).__name__}: {exc}"},
            )
            return SmsResult(success=False, provider=self.provider, reason=str(exc) or type(exc).__name__)

        provider = self.provider
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if isinstance(payload, dict) and payload.get("provider"):
            provider = str(payload["provider"])

        if 200 <= response.status_code < 300:
            return SmsResult(success=True, provider=provider)

        reason = f"HTTP {response.status_code}: {response.text[:200]}"
        logger.warning(
            "sms_delivery_rejected",
            extra={"phone": phone_number, "status_code": response.status_code, "provider": provider},
        )
        return SmsResult(success=False, provider=provider, reason=reason)


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_address: str = "alerts@lifebox.local",
        from_name: str = "LifeBox Alerts",
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.from_name = from_name

    def build_message(self, to_address: str, subject: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(_TAG_RE.sub("", html).strip(), "plain"))
        msg.attach(MIMEText(html, "html"))
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_address}>" if self.from_name else self.from_address
        msg["To"] = to_address
        return msg

    async def send_email(self, to_address: str, subject: str, html: str) -> bool:
        if not self.host:
            raise NotificationError("SMTP host is not configured")

        start_time = asyncio.get_running_loop().time()
        msg = self.build_message(to_address, subject, html)
        if self.use_tls:
            smtp = aiosmtplib.SMTP(hostname=self.host, port=self.port, start_tls=True, timeout=30)
        else:
            smtp = aiosmtplib.SMTP(hostname=self.host, port=self.port, timeout=30)

        try:
            async with smtp:
                if self.user and self.password:
                    await smtp.login(self.user, self.password)
                await smtp.send_message(msg, recipients=[to_address])
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.warning(
                "email_delivery_failed",
                extra={"to": to_address, "error": f"{type(exc).__name__}: {exc}"},
            )
            return False

        duration_ms = (asyncio.get_running_loop().time() - start_time) * 1000
        logger.info("email_delivered", extra={"to": to_address, "duration_ms": round(duration_ms, 1)})
        return True


class NotificationChannel:
    """SMS + email facade used by the reaction dispatcher."""

    def __init__(self, sms: HttpSmsGateway, email: SmtpEmailSender):
        self.sms = sms
        self.email = email

    async def send_sms(self, phone_number: str, message: str, priority: str = "normal") -> SmsResult:
        result = await self.sms.send_sms(phone_number, message, priority=priority)
        notification_deliveries_total.labels(
            channel="sms", result="sent" if result.success else "failed"
        ).inc()
        return result

    async def send_email(self, to_address: str, subject: str, html: str) -> bool:
        ok = await self.email.send_email(to_address, subject, html)
        notification_deliveries_total.labels(channel="email", result="sent" if ok else "failed").inc()
        return ok
