"""
secure_gate/services/cleanup.py - Scheduled retention cleanup for the ledger
Invoked by POST /trigger/cleanup from an external cron, never from the
request path of check/submit.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from secure_gate.core import logging as app_logging
from secure_gate.services.cooldown_ledger import CooldownLedger
from secure_gate.utils.timezone import isoformat_z


def run_retention_cleanup(ledger: CooldownLedger) -> dict[str, Any]:
    """
    Delete submission records older than the retention window.
    Errors propagate so the trigger answers 500 and the cron retries later.
    Returns summary dict.
    """
    logger.info("Running submission retention cleanup...")
    try:
        deleted = ledger.purge_expired()
    except Exception as exc:
        app_logging.log_error("cleanup", "purge_expired", exc)
        raise

    summary = {
        "deleted": deleted,
        "retention_minutes": int(ledger.retention.total_seconds() // 60),
        "ran_at": isoformat_z(ledger.now()),
    }
    logger.info(f"Retention cleanup complete: {summary}")
    return summary
