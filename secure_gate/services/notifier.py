"""
secure_gate/services/notifier.py - Forward accepted submissions to a sink
Detects the form shape from the body, rejects incomplete bodies before the
sink is touched, trims + truncates values, formats a plain message.
"""
from __future__ import annotations

import time
from typing import Any, Optional, Protocol

from secure_gate.clients.telegram_client import TelegramClient
from secure_gate.config import Settings
from secure_gate.core import logging as app_logging
from secure_gate.core.errors import ConfigurationError, NotificationError, RequestValidationFailure
from secure_gate.models import FormSchema, build_form_schemas
from secure_gate.utils.timezone import local_display_time, utc_now

# Keys that only the extended form carries
_EXTENDED_ONLY_KEYS = ("subjectName", "weekNumber")


class NotificationSink(Protocol):
    name: str

    def deliver(self, form: FormSchema, values: dict[str, str]) -> None:
        """Raise NotificationError if the message could not be delivered."""
        ...


def detect_form_schema(payload: dict[str, Any], schemas: dict[str, FormSchema]) -> FormSchema:
    if any(key in payload for key in _EXTENDED_ONLY_KEYS):
        return schemas["extended"]
    return schemas["basic"]


def prepare_submission(
    payload: Any,
    schemas: dict[str, FormSchema],
) -> tuple[FormSchema, dict[str, str]]:
    """
    Validate and sanitize a notification body.
    Raises RequestValidationFailure if any field of the detected shape is
    missing or blank.
    """
    if not isinstance(payload, dict):
        raise RequestValidationFailure("Request body must be a JSON object")
    form = detect_form_schema(payload, schemas)
    missing = form.missing_fields(payload)
    if missing:
        labels = ", ".join(f.label for f in form.fields if f.key in missing)
        raise RequestValidationFailure(f"Missing required fields: {labels}")
    return form, form.sanitize(payload)


def format_message(form: FormSchema, values: dict[str, str], tz_name: Optional[str] = None) -> str:
    lines = ["*New submission*", ""]
    for f in form.fields:
        lines.append(f"*{f.label}:* {values[f.key]}")
    lines.append(f"*Time:* {local_display_time(utc_now(), tz_name)}")
    return "\n".join(lines)


class TelegramSink:
    name = "telegram"

    def __init__(self, client: TelegramClient, tz_name: Optional[str] = None) -> None:
        self.client = client
        self.tz_name = tz_name

    def deliver(self, form: FormSchema, values: dict[str, str]) -> None:
        self.client.send_message(format_message(form, values, self.tz_name))


def build_telegram_sink(settings: Settings) -> TelegramSink:
    if not settings.telegram_bot_token or not settings.telegram_chat_id:
        raise ConfigurationError(
            "Telegram configuration is missing. Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID."
        )
    client = TelegramClient(
        bot_token=settings.telegram_bot_token,
        chat_id=settings.telegram_chat_id,
        api_base=settings.telegram_api_base,
        timeout=settings.telegram_timeout_seconds,
    )
    return TelegramSink(client, tz_name=settings.notification_timezone)


def forward_submission(
    sink: NotificationSink,
    payload: Any,
    schemas: Optional[dict[str, FormSchema]] = None,
) -> dict[str, str]:
    """
    Validate, sanitize and deliver one submission. Returns the values sent.
    The sink is never called for an invalid body.
    """
    form, values = prepare_submission(payload, schemas or build_form_schemas())
    start = time.monotonic()
    try:
        sink.deliver(form, values)
    except NotificationError as exc:
        app_logging.log_notification(
            sink.name, form.name, False, (time.monotonic() - start) * 1000, error=exc.message,
        )
        raise
    app_logging.log_notification(sink.name, form.name, True, (time.monotonic() - start) * 1000)
    return values
