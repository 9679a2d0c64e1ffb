"""
secure_gate/client/device_id.py - Best-effort stable device identifier
Order: in-memory cache → local storage → primary fingerprint provider →
fallback hash. The id is spoofable and resets with the storage file; the
gate accepts that.
"""
from __future__ import annotations

import hashlib
import locale
import os
import platform
import secrets
import socket
import time
import uuid
from typing import Callable, Optional

from loguru import logger
from pydantic import BaseModel

from secure_gate.core.errors import StorageUnavailable
from secure_gate.client.storage import KeyValueStorage
from secure_gate.models import FingerprintResult

DEVICE_ID_KEY = "device-fingerprint-id"

FingerprintProvider = Callable[[], FingerprintResult]


class EnvironmentSignals(BaseModel):
    user_agent: str = "unknown"
    language: str = "unknown"
    screen_width: int = 0
    screen_height: int = 0
    color_depth: int = 0
    timezone_offset_minutes: int = 0
    hardware_concurrency: Optional[int] = None

    @classmethod
    def detect(cls) -> "EnvironmentSignals":
        """Collect what the local host exposes. Screen geometry is not available headless."""
        lang = locale.getlocale()[0] or os.environ.get("LANG", "unknown")
        offset_seconds = time.altzone if time.daylight and time.localtime().tm_isdst else time.timezone
        return cls(
            user_agent=f"{platform.system()}/{platform.release()} Python/{platform.python_version()}",
            language=lang,
            timezone_offset_minutes=offset_seconds // 60,
            hardware_concurrency=os.cpu_count(),
        )

    def joined(self) -> str:
        return "|".join([
            self.user_agent,
            self.language,
            str(self.screen_width),
            str(self.screen_height),
            str(self.color_depth),
            str(self.timezone_offset_minutes),
            str(self.hardware_concurrency or "unknown"),
        ])


def host_fingerprint() -> FingerprintResult:
    """
    Default primary provider: hardware node id + hostname.
    uuid.getnode() falls back to a random multicast-bit number when no MAC
    is readable; confidence drops accordingly.
    """
    node = uuid.getnode()
    random_node = bool((node >> 40) & 0x01)
    digest = hashlib.sha256(f"{node:012x}|{socket.gethostname()}".encode("utf-8")).hexdigest()
    return FingerprintResult(visitor_id=digest[:32], confidence=0.3 if random_node else 0.9)


def generate_fallback_id(signals: EnvironmentSignals) -> str:
    """
    Environment hash plus random and timestamp parts.
    Not reproducible across calls by construction.
    """
    digest = hashlib.sha256(signals.joined().encode("utf-8")).hexdigest()[:10]
    random_part = secrets.token_hex(6)
    timestamp = format(int(time.time() * 1000), "x")
    return f"fallback-{digest}-{random_part}-{timestamp}"


class DeviceIdentifier:
    def __init__(
        self,
        storage: KeyValueStorage,
        provider: Optional[FingerprintProvider] = host_fingerprint,
        signals: Optional[Callable[[], EnvironmentSignals]] = None,
    ) -> None:
        self.storage = storage
        self.provider = provider
        self._signals = signals or EnvironmentSignals.detect
        self._cached: Optional[str] = None

    def get_device_id(self) -> str:
        if self._cached:
            return self._cached

        try:
            stored = self.storage.get_item(DEVICE_ID_KEY)
        except StorageUnavailable as exc:
            logger.warning(f"Device id storage not readable: {exc}")
            stored = None
        if stored:
            self._cached = stored
            logger.debug("Using stored device id.")
            return stored

        device_id = self._from_provider()
        if device_id is None:
            device_id = generate_fallback_id(self._signals())
            logger.warning("Fingerprint provider unavailable; using fallback device id.")

        self._persist(device_id)
        self._cached = device_id
        return device_id

    def _from_provider(self) -> Optional[str]:
        if self.provider is None:
            return None
        try:
            result = self.provider()
        except Exception as exc:
            logger.error(f"Fingerprint provider failed: {exc}")
            return None
        # Confidence is recorded only; no threshold is enforced.
        logger.info(f"Generated device id (confidence={result.confidence:.2f}).")
        return result.visitor_id

    def _persist(self, device_id: str) -> bool:
        try:
            self.storage.set_item(DEVICE_ID_KEY, device_id)
            return True
        except StorageUnavailable as exc:
            logger.warning(f"Could not persist device id: {exc}")
            return False

    def clear(self) -> None:
        self._cached = None
        try:
            self.storage.remove_item(DEVICE_ID_KEY)
        except StorageUnavailable as exc:
            logger.warning(f"Could not remove stored device id: {exc}")
