"""
tests/conftest.py - Shared pytest fixtures
"""
from __future__ import annotations

import os

# Settings are read once at import time; pin a test environment first.
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("TOKEN_SECRET", "test-token-secret")

from datetime import datetime, timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from secure_gate.client.context import GateContext, GateTiming
from secure_gate.client.device_id import DeviceIdentifier
from secure_gate.client.session import SessionStore
from secure_gate.client.storage import MemoryStorage
from secure_gate.clients.ledger_store import InMemorySubmissionStore
from secure_gate.core.errors import NotificationError
from secure_gate.deps import get_ledger, get_notification_sink
from secure_gate.main import app
from secure_gate.models import (
    CooldownState,
    FingerprintResult,
    FormSchema,
    Outcome,
    build_form_schemas,
)
from secure_gate.services.cooldown_ledger import CooldownLedger
from secure_gate.utils.timezone import UTC, millis

TOKEN_SECRET = "test-token-secret"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 10, 17, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSink:
    name = "recording"

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, str]]] = []

    def deliver(self, form: FormSchema, values: dict[str, str]) -> None:
        self.calls.append((form.name, values))


class FailingSink:
    name = "failing"

    def deliver(self, form: FormSchema, values: dict[str, str]) -> None:
        raise NotificationError("Telegram API error: chat not found")


class FakeCooldownBackend:
    """Scriptable client-side backend with a clock-driven window."""

    def __init__(self, clock: FakeClock, cooldown: timedelta = timedelta(minutes=30)) -> None:
        self.clock = clock
        self.cooldown = cooldown
        self.submitted_at: Optional[datetime] = None
        self.submit_outcome: Optional[Outcome] = None
        self.check_calls = 0
        self.submit_calls = 0

    async def check(self, device_id: str) -> CooldownState:
        self.check_calls += 1
        if self.submitted_at is None:
            return CooldownState.clear()
        remaining = millis(self.submitted_at + self.cooldown - self.clock())
        if remaining <= 0:
            return CooldownState.clear()
        return CooldownState(in_cooldown=True, remaining_ms=remaining, last_submission=self.submitted_at)

    async def submit(self, device_id: str, values: dict[str, str]) -> Outcome:
        self.submit_calls += 1
        if self.submit_outcome is not None:
            return self.submit_outcome
        self.submitted_at = self.clock()
        return Outcome.ok(cooldown_until=self.submitted_at + self.cooldown)


class FakeClientSink:
    def __init__(self, outcome: Optional[Outcome] = None) -> None:
        self.outcome = outcome or Outcome.ok()
        self.delivered: list[dict[str, str]] = []

    async def deliver(self, values: dict[str, str]) -> Outcome:
        self.delivered.append(values)
        return self.outcome


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemorySubmissionStore:
    return InMemorySubmissionStore()


@pytest.fixture
def ledger(memory_store, clock) -> CooldownLedger:
    return CooldownLedger(
        memory_store,
        cooldown=timedelta(minutes=30),
        retention=timedelta(minutes=60),
        clock=clock,
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def device_ids(storage) -> DeviceIdentifier:
    return DeviceIdentifier(
        storage,
        provider=lambda: FingerprintResult(visitor_id="device-abc123", confidence=0.9),
    )


@pytest.fixture
def session_store(storage, clock) -> SessionStore:
    return SessionStore(storage, ttl=timedelta(minutes=60), clock=clock)


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def client(ledger, recording_sink):
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_notification_sink] = lambda: recording_sink
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


@pytest.fixture
def fake_backend(clock) -> FakeCooldownBackend:
    return FakeCooldownBackend(clock)


@pytest.fixture
def client_sink() -> FakeClientSink:
    return FakeClientSink()


@pytest.fixture
def gate_context(device_ids, session_store, fake_backend, client_sink, clock) -> GateContext:
    """Context with fast timers so controller tests finish in milliseconds."""
    return GateContext(
        device_ids=device_ids,
        session=session_store,
        cooldown=fake_backend,
        form=build_form_schemas()["basic"],
        token_secret=TOKEN_SECRET,
        sink=client_sink,
        timing=GateTiming(validation_delay=0.01, poll_interval=0.05, tick_interval=0.01),
        clock=clock,
    )
