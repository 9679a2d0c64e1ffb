"""
secure_gate/core/logging.py - loguru structured JSON logging setup
Mandatory events: every cooldown check, every recorded or blocked submission,
every notification attempt, every client state transition, every error.
"""
from __future__ import annotations

import json
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure loguru for structured JSON output to stdout.
    The hosting platform captures stdout, so nothing is written to disk.
    """
    # Remove default loguru handler
    logger.remove()

    logger.add(
        sys.stdout,
        level=log_level.upper(),
        format="{message}",
        serialize=True,       # loguru built-in JSON serialization
        backtrace=True,
        diagnose=False,       # Never dump locals (device ids, tokens)
        colorize=False,
    )


def _build_log_record(
    component: str,
    operation: str,
    extra: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build a base structured log record."""
    record: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "component": component,
        "operation": operation,
    }
    if extra:
        record.update(extra)
    return record


def _short_id(device_id: str) -> str:
    return device_id[:12]


# ──────────────────────────────────────────────────────────────────────────────
# Mandatory log event helpers
# ──────────────────────────────────────────────────────────────────────────────

def log_cooldown_check(
    device_id: str,
    in_cooldown: bool,
    remaining_ms: int,
) -> None:
    record = _build_log_record("cooldown_ledger", "check", {
        "device": _short_id(device_id),
        "in_cooldown": in_cooldown,
        "remaining_ms": remaining_ms,
    })
    logger.info(json.dumps(record))


def log_submission(
    device_id: str,
    accepted: bool,
    remaining_ms: int = 0,
) -> None:
    record = _build_log_record("cooldown_ledger", "submit", {
        "device": _short_id(device_id),
        "accepted": accepted,
        "remaining_ms": remaining_ms,
    })
    logger.info(json.dumps(record))


def log_notification(
    sink: str,
    form: str,
    success: bool,
    latency_ms: float,
    error: Optional[str] = None,
) -> None:
    record = _build_log_record("notifier", "deliver", {
        "sink": sink,
        "form": form,
        "success": success,
        "latency_ms": round(latency_ms, 2),
        "error": error,
    })
    logger.info(json.dumps(record))


def log_state_transition(
    old_state: str,
    new_state: str,
    reason: str,
) -> None:
    record = _build_log_record("admission_controller", "state_transition", {
        "old_state": old_state,
        "new_state": new_state,
        "reason": reason,
    })
    logger.info(json.dumps(record))


def log_error(
    component: str,
    operation: str,
    error: Exception,
    context: Optional[dict[str, Any]] = None,
) -> None:
    """Every error is logged with full context."""
    tb = traceback.format_exc()
    record = _build_log_record(component, operation, {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "stack_trace": tb[:2000] if tb else "",
        "context": context or {},
    })
    logger.error(json.dumps(record))
