"""
Reaction dispatch for recorded alarm events.

Each enabled reaction runs inside its own failure boundary, and each
recipient inside a reaction has its own boundary too: one bad phone number
or one failing channel never stops the rest.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from alarm_engine.models import (
    AlarmEvent,
    AlarmReaction,
    AlarmRule,
    ReactionOutcome,
    ReactionType,
    severity_priority,
)
from alarm_engine.templates import (
    default_email_html,
    default_sms_message,
    email_subject,
    render_for_event,
)
from shared.logging import log_exception
from shared.metrics import alarm_reactions_total

logger = logging.getLogger(__name__)

ReactionHandler = Callable[[AlarmReaction, AlarmEvent], Awaitable[Optional[str]]]


def _config_list(config: dict[str, Any], key: str) -> list[str]:
    values = config.get(key)
    if not isinstance(values, list):
        return []
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


def _unique(values: list[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class ReactionDispatcher:
    def __init__(self, channel, commands, event_store, requested_by: str = "system"):
        self.channel = channel
        self.commands = commands
        self.event_store = event_store
        self.requested_by = requested_by
        self._handlers: dict[str, ReactionHandler] = {
            ReactionType.DASHBOARD.value: self._dashboard,
            ReactionType.SMS.value: self._sms,
            ReactionType.EMAIL.value: self._email,
            ReactionType.SHUTDOWN.value: self._shutdown,
            ReactionType.COMMAND.value: self._command,
        }

    async def dispatch(self, rule: AlarmRule, event: AlarmEvent) -> list[ReactionOutcome]:
        outcomes: list[ReactionOutcome] = []
        for reaction in rule.reactions:
            if not reaction.enabled:
                continue
            outcomes.append(await self._run(reaction, event))
        return outcomes

    async def _run(self, reaction: AlarmReaction, event: AlarmEvent) -> ReactionOutcome:
        handler = self._handlers.get(reaction.reaction_type)
        if handler is None:
            logger.warning(
                "unknown_reaction_type",
                extra={"reaction_id": reaction.id, "reaction_type": reaction.reaction_type},
            )
            return ReactionOutcome(
                reaction_id=reaction.id,
                reaction_type=reaction.reaction_type,
                ok=True,
                detail="ignored",
            )

        try:
            detail = await handler(reaction, event)
        except Exception as exc:
            alarm_reactions_total.labels(reaction_type=reaction.reaction_type, result="failed").inc()
            log_exception(
                logger,
                "alarm_reaction_failed",
                exc,
                context={
                    "reaction_id": reaction.id,
                    "reaction_type": reaction.reaction_type,
                    "event_id": event.id,
                },
            )
            return ReactionOutcome(
                reaction_id=reaction.id,
                reaction_type=reaction.reaction_type,
                ok=False,
                error=str(exc) or type(exc).__name__,
            )

        alarm_reactions_total.labels(reaction_type=reaction.reaction_type, result="ok").inc()
        return ReactionOutcome(
            reaction_id=reaction.id,
            reaction_type=reaction.reaction_type,
            ok=True,
            detail=detail,
        )

    async def _dashboard(self, reaction: AlarmReaction, event: AlarmEvent) -> str:
        # The persisted event is what the dashboard shows.
        return "recorded"

    async def _sms(self, reaction: AlarmReaction, event: AlarmEvent) -> str:
        template = event.rule.custom_sms_message if event.rule else None
        message = render_for_event(template, event, default_sms_message(event))
        priority = severity_priority(event.severity)

        client = event.device.client if event.device else None
        recipients = list(client.phone_numbers) if client else []
        recipients += _config_list(reaction.reaction_config, "phoneNumbers")

        sent = 0
        for phone in _unique(recipients):
            try:
                result = await self.channel.send_sms(phone, message, priority=priority)
            except Exception as exc:
                log_exception(
                    logger,
                    "sms_delivery_failed",
                    exc,
                    context={"event_id": event.id, "phone": phone},
                )
                continue
            if result.success:
                sent += 1
            else:
                logger.warning(
                    "sms_delivery_failed",
                    extra={
                        "event_id": event.id,
                        "phone": phone,
                        "provider": result.provider,
                        "reason": result.reason,
                    },
                )

        logger.info(
            "sms_reaction_done",
            extra={"event_id": event.id, "recipients": len(recipients), "sent": sent},
        )
        return f"sms sent to {sent} recipient(s)"

    async def _email(self, reaction: AlarmReaction, event: AlarmEvent) -> str:
        template = event.rule.custom_email_message if event.rule else None
        html = render_for_event(template, event, default_email_html(event))
        subject = email_subject(event)

        client = event.device.client if event.device else None
        recipients = [client.primary_user_email] if client and client.primary_user_email else []
        recipients += _config_list(reaction.reaction_config, "emails")

        sent = 0
        for address in _unique(recipients):
            try:
                ok = await self.channel.send_email(address, subject, html)
            except Exception as exc:
                log_exception(
                    logger,
                    "email_delivery_failed",
                    exc,
                    context={"event_id": event.id, "to": address},
                )
                continue
            if ok:
                sent += 1

        logger.info(
            "email_reaction_done",
            extra={"event_id": event.id, "recipients": len(recipients), "sent": sent},
        )
        return f"email sent to {sent} recipient(s)"

    async def _shutdown(self, reaction: AlarmReaction, event: AlarmEvent) -> str:
        # TODO: route through DeviceCommandClient once the firmware accepts remote shutdown.
        device_code = event.device.device_code if event.device else None
        logger.warning(
            "shutdown_reaction_requested",
            extra={
                "event_id": event.id,
                "device_id": event.device_id,
                "device_code": device_code,
                "alarm_message": event.message,
            },
        )
        return "logged"

    async def _command(self, reaction: AlarmReaction, event: AlarmEvent) -> str:
        config = reaction.reaction_config or {}
        command_type = config.get("commandType")
        if not command_type:
            logger.warning(
                "command_reaction_missing_type",
                extra={"reaction_id": reaction.id, "event_id": event.id},
            )
            return "skipped: missing commandType"

        rule_name = event.rule.name if event.rule else "Alarm Rule"
        reason = config.get("reason") or f"Automatic command triggered by alarm: {rule_name}"
        payload = config.get("payload") if isinstance(config.get("payload"), dict) else {}

        try:
            command_id = await self.commands.enqueue_command(
                event.device_id,
                command_type,
                reason,
                payload,
                requested_by=self.requested_by,
            )
            suffix = f" | Command sent: {command_type} ({command_id})"
            await self.event_store.append_to_message(event.id, suffix)
        except Exception as exc:
            failure = f" | Command failed: {exc}"
            try:
                await self.event_store.append_to_message(event.id, failure)
                event.message += failure
            except Exception as update_exc:
                log_exception(
                    logger,
                    "command_failure_note_failed",
                    update_exc,
                    context={"event_id": event.id},
                )
            raise

        event.message += suffix
        logger.info(
            "command_reaction_done",
            extra={"event_id": event.id, "command_type": command_type, "command_id": command_id},
        )
        return f"command {command_id}"
