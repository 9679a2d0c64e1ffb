"""
tests/test_client_backends.py - Cooldown backends and the async gate API client
"""
from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from secure_gate.client.backends import (
    COOKIE_KEY,
    COOLDOWN_KEY,
    HttpNotificationSink,
    LocalCooldownBackend,
    RemoteCooldownBackend,
)
from secure_gate.client.context import build_gate_context
from secure_gate.client.gate_api import COOLDOWN_PATH, NOTIFY_PATH, GateApiClient
from secure_gate.client.storage import ExpiringStorage, MemoryStorage
from secure_gate.config import Settings
from secure_gate.core.errors import ConfigurationError
from secure_gate.utils.timezone import to_epoch_ms

BASE_URL = "http://gate.test"


def _api(handler) -> GateApiClient:
    return GateApiClient(BASE_URL, transport=httpx.MockTransport(handler))


# ── GateApiClient ─────────────────────────────────────────────────────────────

def test_check_cooldown_parses_response():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == COOLDOWN_PATH
        assert json.loads(request.content) == {"device_id": "dev-1", "action": "check"}
        return httpx.Response(200, json={
            "inCooldown": True, "remaining": 90_000, "lastSubmission": "2026-10-17T12:00:00.000Z",
        })

    state = asyncio.run(_api(handler).check_cooldown("dev-1"))
    assert state.in_cooldown
    assert state.remaining_ms == 90_000
    assert state.last_submission.hour == 12


def test_check_cooldown_fails_open():
    def unreachable(request):
        raise httpx.ConnectError("connection refused")

    def server_error(request):
        return httpx.Response(500, json={"success": False, "error": "boom"})

    def garbage(request):
        return httpx.Response(200, json={"inCooldown": True, "remaining": "soon"})

    for handler in (unreachable, server_error, garbage):
        state = asyncio.run(_api(handler).check_cooldown("dev-1"))
        assert not state.in_cooldown


def test_submit_outcomes():
    def accepted(request):
        return httpx.Response(200, json={
            "success": True, "message": "Submission recorded", "cooldownUntil": "2026-10-17T12:30:00.000Z",
        })

    def blocked(request):
        return httpx.Response(403, json={"success": False, "inCooldown": True, "remaining": 5000})

    def unreachable(request):
        raise httpx.ReadTimeout("timed out")

    def misconfigured(request):
        return httpx.Response(500, json={"success": False, "error": "Supabase configuration is missing."})

    ok = asyncio.run(_api(accepted).submit("dev-1", "Alice", "42"))
    assert ok.is_ok
    assert ok.cooldown_until.minute == 30

    rejected = asyncio.run(_api(blocked).submit("dev-1"))
    assert rejected.is_rejected
    assert rejected.reason == "COOLDOWN_ACTIVE"
    assert rejected.remaining_ms == 5000

    failed = asyncio.run(_api(unreachable).submit("dev-1"))
    assert failed.is_failed

    failed = asyncio.run(_api(misconfigured).submit("dev-1"))
    assert failed.is_failed
    assert failed.cause == "Supabase configuration is missing."


@pytest.mark.parametrize("status, body", [
    (403, {"success": False, "inCooldown": True, "remaining": "soon"}),
    (403, {"success": False, "inCooldown": True, "remaining": [5000]}),
    (200, {"success": True, "cooldownUntil": "half past twelve"}),
    (200, {"success": True, "cooldownUntil": 1760702400000}),
])
def test_submit_fails_closed_on_unreadable_response(status, body):
    def handler(request):
        return httpx.Response(status, json=body)

    outcome = asyncio.run(_api(handler).submit("dev-1"))
    assert outcome.is_failed
    assert outcome.cause.startswith("Unreadable cooldown response")


def test_remote_backend_maps_form_values():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "cooldownUntil": "2026-10-17T12:30:00.000Z"})

    backend = RemoteCooldownBackend(_api(handler))
    outcome = asyncio.run(backend.submit("dev-1", {"name": "Alice", "id": "42"}))
    assert outcome.is_ok
    assert seen == {"device_id": "dev-1", "action": "submit", "name": "Alice", "user_id_field": "42"}


def test_http_sink_reports_failure():
    def handler(request):
        assert request.url.path == NOTIFY_PATH
        return httpx.Response(400, json={"success": False, "error": "Missing required fields: ID"})

    outcome = asyncio.run(HttpNotificationSink(_api(handler)).deliver({"name": "Alice"}))
    assert outcome.is_failed
    assert outcome.cause == "Missing required fields: ID"


# ── LocalCooldownBackend ──────────────────────────────────────────────────────

def test_local_backend_cycle(clock):
    storage = MemoryStorage()
    backend = LocalCooldownBackend(storage, timedelta(minutes=30), clock=clock)

    assert not asyncio.run(backend.check("ignored")).in_cooldown
    assert asyncio.run(backend.submit("ignored", {})).is_ok
    assert storage.get_item(COOLDOWN_KEY) == str(to_epoch_ms(clock()))

    clock.advance(minutes=10)
    state = asyncio.run(backend.check("ignored"))
    assert state.in_cooldown
    assert state.remaining_ms == 20 * 60 * 1000

    again = asyncio.run(backend.submit("ignored", {}))
    assert again.is_rejected

    clock.advance(minutes=20)
    assert not asyncio.run(backend.check("ignored")).in_cooldown
    assert storage.get_item(COOLDOWN_KEY) is None


def test_local_backend_clears_invalid_stamp(clock):
    storage = MemoryStorage()
    storage.set_item(COOLDOWN_KEY, "yesterday")
    backend = LocalCooldownBackend(storage, clock=clock)
    assert not asyncio.run(backend.check("ignored")).in_cooldown
    assert storage.get_item(COOLDOWN_KEY) is None


@pytest.mark.parametrize("stamp", ["²³", "١٢٣", "9" * 5000, "9" * 15])
def test_local_backend_clears_unparseable_stamp(clock, stamp):
    storage = MemoryStorage()
    storage.set_item(COOLDOWN_KEY, stamp)
    backend = LocalCooldownBackend(storage, clock=clock)
    assert not asyncio.run(backend.check("ignored")).in_cooldown
    assert storage.get_item(COOLDOWN_KEY) is None


def test_cookie_mirror_survives_cleared_local_storage(clock):
    storage = MemoryStorage()
    cookies = ExpiringStorage(MemoryStorage(), clock)
    backend = LocalCooldownBackend(storage, timedelta(minutes=30), mirror=cookies, clock=clock)

    asyncio.run(backend.submit("ignored", {}))
    storage.remove_item(COOLDOWN_KEY)
    assert cookies.get_item(COOKIE_KEY) is not None
    assert asyncio.run(backend.check("ignored")).in_cooldown

    clock.advance(minutes=30)
    assert not asyncio.run(backend.check("ignored")).in_cooldown


# ── Context wiring ────────────────────────────────────────────────────────────

def test_build_gate_context_selects_backend():
    remote = build_gate_context(Settings(token_secret="s"), storage=MemoryStorage())
    assert isinstance(remote.cooldown, RemoteCooldownBackend)

    mirrored = build_gate_context(
        Settings(token_secret="s", cooldown_backend="local+cookie", form_schema="extended"),
        storage=MemoryStorage(),
        cookie_storage=MemoryStorage(),
    )
    assert isinstance(mirrored.cooldown, LocalCooldownBackend)
    assert mirrored.cooldown.mirror is not None
    assert mirrored.form.name == "extended"


def test_cookie_mirror_persists_across_contexts(tmp_path, clock):
    settings = Settings(
        token_secret="s",
        cooldown_backend="local+cookie",
        client_storage_path=str(tmp_path / "storage.json"),
        client_cookie_path=str(tmp_path / "cookies.json"),
    )

    first = build_gate_context(settings, clock=clock)
    assert asyncio.run(first.cooldown.submit("ignored", {})).is_ok

    (tmp_path / "storage.json").unlink()
    clock.advance(minutes=5)

    reloaded = build_gate_context(settings, clock=clock)
    state = asyncio.run(reloaded.cooldown.check("ignored"))
    assert state.in_cooldown
    assert state.remaining_ms == 25 * 60 * 1000


def test_build_gate_context_requires_token_secret():
    with pytest.raises(ConfigurationError):
        build_gate_context(Settings(token_secret=None), storage=MemoryStorage())
