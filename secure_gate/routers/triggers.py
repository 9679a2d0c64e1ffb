"""
secure_gate/routers/triggers.py - Cron-triggered maintenance endpoints
Trigger endpoints: /trigger/cleanup, /trigger/issue-token
All protected by X-Cron-Secret header.
"""

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Request
from loguru import logger

from secure_gate.config import Settings, get_settings
from secure_gate.core.auth import verify_cron_secret
from secure_gate.core.errors import ConfigurationError
from secure_gate.core.rate_limiter import limiter, RATE_LIMITS
from secure_gate.core.tokens import issue_token, token_expires_at
from secure_gate.deps import get_ledger
from secure_gate.services.cleanup import run_retention_cleanup
from secure_gate.services.cooldown_ledger import CooldownLedger
from secure_gate.utils.timezone import isoformat_z

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# Retention cleanup - deletes ledger rows older than the retention window
# Cron: every 15 minutes
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/cleanup")
@limiter.limit(RATE_LIMITS["triggers"])
def trigger_cleanup(
    request: Request,
    _auth: bool = Depends(verify_cron_secret),
    ledger: CooldownLedger = Depends(get_ledger),
) -> dict[str, Any]:
    return run_retention_cleanup(ledger)


# ──────────────────────────────────────────────────────────────────────────────
# Link token issuing - operators mint ?token=... links for the gate page
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/issue-token")
@limiter.limit(RATE_LIMITS["triggers"])
def trigger_issue_token(
    request: Request,
    _auth: bool = Depends(verify_cron_secret),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    if not settings.token_secret:
        raise ConfigurationError("TOKEN_SECRET is not configured.")
    token = issue_token(settings.token_secret)
    expires_at = token_expires_at(token, timedelta(minutes=settings.token_ttl_minutes))
    logger.info("Issued new gate link token.")
    return {"token": token, "expiresAt": isoformat_z(expires_at)}
