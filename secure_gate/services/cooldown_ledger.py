"""
secure_gate/services/cooldown_ledger.py - Per-device submission cooldown
check(): read-only, safe to poll.
submit(): re-check, then append. The check and the insert are two separate
store calls with no lock between them, so two near-simultaneous submits from
one device can both pass. Accepted for this threat model.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from secure_gate.core import logging as app_logging
from secure_gate.clients.ledger_store import SubmissionStore
from secure_gate.models import CooldownState, SubmissionRecord, SubmitResult
from secure_gate.utils.timezone import Clock, ensure_utc, millis, utc_now


class CooldownLedger:
    def __init__(
        self,
        store: SubmissionStore,
        cooldown: timedelta = timedelta(minutes=30),
        retention: timedelta = timedelta(hours=1),
        clock: Clock = utc_now,
    ) -> None:
        if retention <= cooldown:
            raise ValueError("retention window must be longer than the cooldown window")
        self.store = store
        self.cooldown = cooldown
        self.retention = retention
        self._clock = clock

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    def _state_at(self, device_id: str, now: datetime) -> CooldownState:
        latest = self.store.latest_since(device_id, now - self.cooldown)
        if latest is None:
            return CooldownState.clear()
        submitted_at = ensure_utc(latest.submitted_at)
        remaining = millis(submitted_at + self.cooldown - now)
        if remaining <= 0:
            return CooldownState.clear()
        return CooldownState(
            in_cooldown=True,
            remaining_ms=remaining,
            last_submission=submitted_at,
        )

    def check(self, device_id: str) -> CooldownState:
        state = self._state_at(device_id, self.now())
        app_logging.log_cooldown_check(device_id, state.in_cooldown, state.remaining_ms)
        return state

    def submit(
        self,
        device_id: str,
        name: Optional[str] = None,
        user_id_field: Optional[str] = None,
    ) -> SubmitResult:
        now = self.now()
        state = self._state_at(device_id, now)
        if state.in_cooldown:
            app_logging.log_submission(device_id, accepted=False, remaining_ms=state.remaining_ms)
            return SubmitResult(
                success=False,
                in_cooldown=True,
                remaining_ms=state.remaining_ms,
            )

        self.store.insert(SubmissionRecord(
            device_id=device_id,
            submitted_at=now,
            name=name or None,
            user_id_field=user_id_field or None,
        ))
        app_logging.log_submission(device_id, accepted=True)
        return SubmitResult(success=True, cooldown_until=now + self.cooldown)

    def purge_expired(self) -> int:
        """Delete records older than the retention window. Run out-of-band."""
        return self.store.delete_before(self.now() - self.retention)
