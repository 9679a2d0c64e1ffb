"""
secure_gate/client/controller.py - Admission state machine for the gate page

    checking ──cooldown──────────────────────────────► cooldown
       │ ──session valid─────────────────────────────► granted (SESSION_RESTORED)
       │ ──no token──────────────────────────────────► denied  (NO_TOKEN_PROVIDED)
       └──token──► validating ──(delay, re-check)──► granted (ACCESS_GRANTED)
                                                  └─► expired (validator reason)
    cooldown ──remote check reports clear──────────► granted (COOLDOWN_CLEARED)

Every state owns a TaskScope. A transition closes the old scope before the
new state schedules anything, and results that arrive after the state moved
on (or after close) are dropped.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from loguru import logger

from secure_gate.client.context import GateContext
from secure_gate.client.scheduler import TaskScope
from secure_gate.core import logging as app_logging
from secure_gate.models import AccessState, Outcome
from secure_gate.utils.timezone import format_remaining

Listener = Callable[["AdmissionController"], None]

BLOCKING_STATES = {AccessState.DENIED, AccessState.EXPIRED, AccessState.COOLDOWN}


class AdmissionController:
    def __init__(self, context: GateContext, token: Optional[str] = None) -> None:
        self.context = context
        self.token = token
        self.state = AccessState.CHECKING
        self.reason = ""
        self.remaining_ms = 0
        self.device_id: Optional[str] = None
        self.submitted = False
        self.cooldown_until = None
        self.closed = False
        self._generation = 0
        self._scope = TaskScope(AccessState.CHECKING.value)
        self._pending: Optional[asyncio.Task] = None
        self._listeners: list[Listener] = []

    # ──────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────────

    async def __aenter__(self) -> "AdmissionController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> AccessState:
        """Resolve the initial state. VALIDATING finishes in the background; see settled()."""
        return await self._evaluate()

    @property
    def countdown(self) -> str:
        """Remaining cooldown as M:SS for display."""
        return format_remaining(self.remaining_ms)

    @property
    def blocked(self) -> bool:
        return self.state in BLOCKING_STATES

    async def retry(self) -> AccessState:
        """Re-run admission from checking. Only meaningful from a blocking state."""
        if self.closed or not self.blocked:
            return self.state
        self._transition(AccessState.CHECKING, "RETRY")
        return await self._evaluate()

    async def settled(self) -> AccessState:
        """Wait for a pending token validation, if any."""
        task = self._pending
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)
        return self.state

    async def logout(self) -> None:
        self.context.session.clear_session()
        logger.info("Session cleared by logout.")
        await self.close()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._scope.aclose()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # ──────────────────────────────────────────────────────────────────────────
    # Transitions
    # ──────────────────────────────────────────────────────────────────────────

    def _stale(self, generation: int) -> bool:
        return self.closed or generation != self._generation

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _transition(self, new_state: AccessState, reason: str, remaining_ms: int = 0) -> None:
        old_state = self.state
        self._scope.cancel()
        self._scope = TaskScope(new_state.value)
        self._pending = None
        self._generation += 1
        self.state = new_state
        self.reason = reason
        self.remaining_ms = remaining_ms if new_state is AccessState.COOLDOWN else 0
        app_logging.log_state_transition(old_state.value, new_state.value, reason)
        self._notify()

    def _enter_cooldown(self, remaining_ms: int) -> None:
        if self.state is AccessState.COOLDOWN:
            self.remaining_ms = remaining_ms
            self._notify()
            return
        self._transition(AccessState.COOLDOWN, "COOLDOWN_ACTIVE", remaining_ms)
        timing = self.context.timing
        self._scope.every(timing.poll_interval, self._poll_cooldown, name="cooldown-poll")
        self._scope.every(timing.tick_interval, self._tick_countdown, name="countdown-tick")

    async def _evaluate(self) -> AccessState:
        generation = self._generation
        if self.device_id is None:
            self.device_id = self.context.device_ids.get_device_id()

        status = await self.context.cooldown.check(self.device_id)
        if self._stale(generation):
            return self.state
        if status.in_cooldown:
            self._enter_cooldown(status.remaining_ms)
            return self.state

        if self.context.session.has_valid_session():
            self._transition(AccessState.GRANTED, "SESSION_RESTORED")
            return self.state

        if not self.token:
            self._transition(AccessState.DENIED, "NO_TOKEN_PROVIDED")
            return self.state

        self._transition(AccessState.VALIDATING, "VALIDATING_TOKEN")
        self._pending = self._scope.after(
            self.context.timing.validation_delay, self._finish_validation, name="token-validation",
        )
        return self.state

    async def _finish_validation(self) -> None:
        generation = self._generation
        status = await self.context.cooldown.check(self.device_id)
        if self._stale(generation):
            return
        if status.in_cooldown:
            self._enter_cooldown(status.remaining_ms)
            return

        result = self.context.validate_token(self.token)
        if result.valid:
            self.context.session.store_session_token()
            self._transition(AccessState.GRANTED, "ACCESS_GRANTED")
        else:
            self._transition(AccessState.EXPIRED, result.reason.value)

    # ──────────────────────────────────────────────────────────────────────────
    # Cooldown timers
    # ──────────────────────────────────────────────────────────────────────────

    async def _poll_cooldown(self) -> None:
        generation = self._generation
        status = await self.context.cooldown.check(self.device_id)
        if self._stale(generation) or self.state is not AccessState.COOLDOWN:
            return
        if status.in_cooldown:
            self.remaining_ms = status.remaining_ms
            self._notify()
        else:
            self._transition(AccessState.GRANTED, "COOLDOWN_CLEARED")

    async def _tick_countdown(self) -> None:
        if self.state is not AccessState.COOLDOWN:
            return
        step = int(self.context.timing.tick_interval * 1000)
        self.remaining_ms = max(0, self.remaining_ms - step)
        self._notify()
        if self.remaining_ms == 0:
            await self._poll_cooldown()

    # ──────────────────────────────────────────────────────────────────────────
    # Submission
    # ──────────────────────────────────────────────────────────────────────────

    async def submit(self, payload: dict[str, Any]) -> Outcome:
        """
        Record a submission and forward it. Order matters: form check, cooldown
        re-check, backend submit, then notification. A notification failure
        after a recorded submit is reported as failed; the cooldown stays.
        """
        if self.closed or self.state is not AccessState.GRANTED:
            return Outcome.rejected("ACCESS_NOT_GRANTED")
        if not isinstance(payload, dict) or self.context.form.missing_fields(payload):
            return Outcome.rejected("MISSING_FIELDS")
        values = self.context.form.sanitize(payload)

        generation = self._generation
        status = await self.context.cooldown.check(self.device_id)
        if status.in_cooldown:
            if not self._stale(generation):
                self._enter_cooldown(status.remaining_ms)
            return Outcome.rejected("COOLDOWN_ACTIVE", status.remaining_ms)

        outcome = await self.context.cooldown.submit(self.device_id, values)
        if outcome.is_rejected:
            if not self._stale(generation):
                self._enter_cooldown(outcome.remaining_ms)
            return outcome
        if outcome.is_failed:
            logger.error(f"Submission not recorded: {outcome.cause}")
            return outcome

        self.submitted = True
        self.cooldown_until = outcome.cooldown_until
        if self.context.sink is None:
            return outcome

        delivered = await self.context.sink.deliver(values)
        if delivered.is_failed:
            logger.error(f"Submission recorded but notification failed: {delivered.cause}")
            return delivered
        return outcome
