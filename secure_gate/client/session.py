"""
secure_gate/client/session.py - Local "already validated" session marker
Written once right after a successful token validation, cleared on logout.
Expiry is fixed at creation; there is no refresh.
"""
from __future__ import annotations

from datetime import timedelta

from loguru import logger
from pydantic import ValidationError

from secure_gate.core.errors import StorageUnavailable
from secure_gate.client.storage import KeyValueStorage
from secure_gate.models import SessionMarker
from secure_gate.utils.timezone import Clock, ensure_utc, utc_now

SESSION_KEY = "secure-session"


class SessionStore:
    def __init__(
        self,
        storage: KeyValueStorage,
        ttl: timedelta = timedelta(minutes=60),
        clock: Clock = utc_now,
    ) -> None:
        self.storage = storage
        self.ttl = ttl
        self._clock = clock

    def has_valid_session(self) -> bool:
        """False on missing, corrupt, expired or unreadable markers."""
        try:
            raw = self.storage.get_item(SESSION_KEY)
        except StorageUnavailable as exc:
            logger.warning(f"Session storage not readable: {exc}")
            return False
        if not raw:
            return False
        try:
            marker = SessionMarker.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding corrupt session marker.")
            self.clear_session()
            return False
        return ensure_utc(self._clock()) < ensure_utc(marker.expires_at)

    def store_session_token(self) -> None:
        now = ensure_utc(self._clock())
        marker = SessionMarker(created_at=now, expires_at=now + self.ttl)
        try:
            self.storage.set_item(SESSION_KEY, marker.model_dump_json())
        except StorageUnavailable as exc:
            # Access is still granted for this page load; it just won't be restored.
            logger.warning(f"Could not persist session marker: {exc}")

    def clear_session(self) -> None:
        try:
            self.storage.remove_item(SESSION_KEY)
        except StorageUnavailable as exc:
            logger.warning(f"Could not clear session marker: {exc}")
