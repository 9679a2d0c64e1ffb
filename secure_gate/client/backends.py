"""
secure_gate/client/backends.py - Pluggable cooldown backends + notification sinks
One admission flow, three ways of remembering a submission:
  - RemoteCooldownBackend: the server ledger (authoritative)
  - LocalCooldownBackend: local storage only
  - LocalCooldownBackend(mirror=...): local storage mirrored to an expiring
    cookie-style store, read back when local storage is empty
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional, Protocol

from loguru import logger

from secure_gate.core.errors import StorageUnavailable
from secure_gate.client.gate_api import GateApiClient
from secure_gate.client.storage import ExpiringStorage, KeyValueStorage
from secure_gate.models import CooldownState, Outcome
from secure_gate.utils.timezone import Clock, ensure_utc, millis, parse_epoch_ms, to_epoch_ms, utc_now

COOLDOWN_KEY = "form-submission-cooldown"
COOKIE_KEY = "form_cooldown"


class CooldownBackend(Protocol):
    async def check(self, device_id: str) -> CooldownState:
        """Never raises; failures read as clear."""
        ...

    async def submit(self, device_id: str, values: dict[str, str]) -> Outcome:
        """Never raises; failures are Outcome.failed."""
        ...


class ClientNotificationSink(Protocol):
    async def deliver(self, values: dict[str, str]) -> Outcome:
        ...


# ──────────────────────────────────────────────────────────────────────────────
# Remote ledger
# ──────────────────────────────────────────────────────────────────────────────

class RemoteCooldownBackend:
    def __init__(self, api: GateApiClient) -> None:
        self.api = api

    async def check(self, device_id: str) -> CooldownState:
        return await self.api.check_cooldown(device_id)

    async def submit(self, device_id: str, values: dict[str, str]) -> Outcome:
        return await self.api.submit(
            device_id,
            name=values.get("name"),
            user_id_field=values.get("id"),
        )


class HttpNotificationSink:
    def __init__(self, api: GateApiClient) -> None:
        self.api = api

    async def deliver(self, values: dict[str, str]) -> Outcome:
        return await self.api.notify(values)


# ──────────────────────────────────────────────────────────────────────────────
# Local storage (optionally mirrored to a cookie-style store)
# ──────────────────────────────────────────────────────────────────────────────

class LocalCooldownBackend:
    """Per-install cooldown; device_id is ignored since storage is already per-device."""

    def __init__(
        self,
        storage: KeyValueStorage,
        cooldown: timedelta = timedelta(minutes=30),
        mirror: Optional[ExpiringStorage] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.storage = storage
        self.cooldown = cooldown
        self.mirror = mirror
        self._clock = clock

    def _read_stamp(self) -> Optional[str]:
        stamp = None
        try:
            stamp = self.storage.get_item(COOLDOWN_KEY)
        except StorageUnavailable as exc:
            logger.warning(f"Cooldown storage not readable: {exc}")
        if not stamp and self.mirror is not None:
            try:
                stamp = self.mirror.get_item(COOKIE_KEY)
            except StorageUnavailable as exc:
                logger.warning(f"Cooldown cookie not readable: {exc}")
        return stamp

    def _clear(self) -> None:
        try:
            self.storage.remove_item(COOLDOWN_KEY)
        except StorageUnavailable as exc:
            logger.warning(f"Could not clear cooldown marker: {exc}")
        if self.mirror is not None:
            try:
                self.mirror.remove_item(COOKIE_KEY)
            except StorageUnavailable as exc:
                logger.warning(f"Could not clear cooldown cookie: {exc}")

    async def check(self, device_id: str) -> CooldownState:
        stamp = self._read_stamp()
        if not stamp:
            return CooldownState.clear()
        submitted_at = parse_epoch_ms(stamp)
        if submitted_at is None:
            logger.warning("Invalid cooldown timestamp, clearing.")
            self._clear()
            return CooldownState.clear()

        remaining = millis(submitted_at + self.cooldown - ensure_utc(self._clock()))
        if remaining <= 0:
            self._clear()
            return CooldownState.clear()
        return CooldownState(in_cooldown=True, remaining_ms=remaining, last_submission=submitted_at)

    async def submit(self, device_id: str, values: dict[str, str]) -> Outcome:
        state = await self.check(device_id)
        if state.in_cooldown:
            return Outcome.rejected("COOLDOWN_ACTIVE", state.remaining_ms)

        now = ensure_utc(self._clock())
        stamp = str(to_epoch_ms(now))
        written = False
        try:
            self.storage.set_item(COOLDOWN_KEY, stamp)
            written = True
        except StorageUnavailable as exc:
            logger.error(f"Could not record cooldown locally: {exc}")
        if self.mirror is not None:
            try:
                self.mirror.set_item(COOKIE_KEY, stamp, self.cooldown)
                written = True
            except StorageUnavailable as exc:
                logger.error(f"Could not record cooldown cookie: {exc}")
        if not written:
            return Outcome.failed("Cooldown could not be recorded")
        return Outcome.ok(cooldown_until=now + self.cooldown)
