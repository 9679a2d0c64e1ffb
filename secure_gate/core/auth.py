"""
secure_gate/core/auth.py - Cron secret verification for trigger endpoints
"""
from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from secure_gate.config import Settings, get_settings
from secure_gate.core.errors import ConfigurationError


async def verify_cron_secret(
    x_cron_secret: Optional[str] = Header(None, alias="X-Cron-Secret"),
    settings: Settings = Depends(get_settings),
) -> bool:
    """Validate the X-Cron-Secret header on trigger endpoints."""
    if not settings.cron_secret:
        raise ConfigurationError(
            "CRON_SECRET is not configured; trigger endpoints are disabled."
        )
    if not x_cron_secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Cron-Secret header required",
        )
    if not secrets.compare_digest(x_cron_secret, settings.cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )
    return True
