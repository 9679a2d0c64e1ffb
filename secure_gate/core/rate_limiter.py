"""
secure_gate/core/rate_limiter.py - slowapi rate limiting configuration
IP-based throttling in front of the per-device cooldown.
"""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from secure_gate.config import get_settings

# Single shared limiter instance - imported by main.py and routers
limiter = Limiter(
    key_func=get_remote_address,
    enabled=get_settings().rate_limit_enabled,
)

# ── Rate limits per endpoint category ─────────────────────────────────────────
# These string values are used as decorators on individual route handlers.

RATE_LIMITS = {
    # Cooldown check/submit: the client polls every 10s while blocked
    "cooldown": "30/minute",
    # Notification forwarding: one legitimate call per cooldown window
    "notify": "10/minute",
    # Cron trigger endpoints
    "triggers": "10/minute",
}
