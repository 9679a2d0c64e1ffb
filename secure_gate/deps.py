from __future__ import annotations

from fastapi import Depends, Request

from secure_gate.config import Settings, get_settings
from secure_gate.core.errors import ConfigurationError
from secure_gate.models import FormSchema, build_form_schemas
from secure_gate.services.cooldown_ledger import CooldownLedger
from secure_gate.services.notifier import NotificationSink, build_telegram_sink


def get_ledger(request: Request) -> CooldownLedger:
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        error = getattr(request.app.state, "ledger_error", None)
        raise ConfigurationError(error or "Submission store is not configured.")
    return ledger


def get_notification_sink(settings: Settings = Depends(get_settings)) -> NotificationSink:
    return build_telegram_sink(settings)


def get_form_schemas(settings: Settings = Depends(get_settings)) -> dict[str, FormSchema]:
    return build_form_schemas(
        max_name_length=settings.max_name_length,
        max_id_length=settings.max_id_length,
        max_week_length=settings.max_week_length,
    )
