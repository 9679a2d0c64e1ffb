"""
secure_gate/core/tokens.py - Link token issuing and validation
Token format: "<issued_at_ms>.<signature>" where signature is the first 32 hex
chars of HMAC-SHA256(secret, issued_at_ms). A shared-secret + expiry check,
nothing stronger.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from secure_gate.models import TokenReason, TokenValidation
from secure_gate.utils.timezone import parse_epoch_ms, to_epoch_ms, utc_now

SIGNATURE_LENGTH = 32


def _sign(secret: str, issued_at_ms: int) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        str(issued_at_ms).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return digest[:SIGNATURE_LENGTH]


def issue_token(secret: str, now: Optional[datetime] = None) -> str:
    """Mint a token stamped with `now` (UTC)."""
    issued_at_ms = to_epoch_ms(now or utc_now())
    return f"{issued_at_ms}.{_sign(secret, issued_at_ms)}"


def token_expires_at(token: str, ttl: timedelta) -> Optional[datetime]:
    """Expiry of a well-formed token, None if it cannot be parsed."""
    issued_at = parse_epoch_ms(token.strip().partition(".")[0])
    if issued_at is None:
        return None
    try:
        return issued_at + ttl
    except OverflowError:
        return None


def validate_token(
    token: Optional[str],
    *,
    secret: str,
    ttl: timedelta,
    now: Optional[datetime] = None,
    clock_skew: timedelta = timedelta(seconds=30),
) -> TokenValidation:
    """
    Decide whether a link token grants access.
    Pure: the result depends only on the arguments. Reasons distinguish an
    absent token, a malformed one, a wrong signature and an expired one.
    """
    if token is None or not token.strip():
        return TokenValidation(valid=False, reason=TokenReason.NO_TOKEN_PROVIDED)

    parts = token.strip().split(".")
    if len(parts) != 2:
        return TokenValidation(valid=False, reason=TokenReason.INVALID_FORMAT)

    stamp, signature = parts
    issued_at = parse_epoch_ms(stamp)
    if issued_at is None or len(signature) != SIGNATURE_LENGTH or not signature.isascii():
        return TokenValidation(valid=False, reason=TokenReason.INVALID_FORMAT)

    if not secrets.compare_digest(signature, _sign(secret, int(stamp))):
        return TokenValidation(valid=False, reason=TokenReason.INVALID_SIGNATURE)

    now = now or utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if issued_at - now > clock_skew:
        return TokenValidation(
            valid=False, reason=TokenReason.INVALID_FORMAT, issued_at=issued_at
        )
    if now - issued_at > ttl:
        return TokenValidation(
            valid=False, reason=TokenReason.TOKEN_EXPIRED, issued_at=issued_at
        )
    return TokenValidation(valid=True, reason=TokenReason.VALID, issued_at=issued_at)
