"""
tests/test_client_storage.py - Visitor-side storage, session marker and device id
"""
from __future__ import annotations

from datetime import timedelta

from secure_gate.client.device_id import (
    DEVICE_ID_KEY,
    DeviceIdentifier,
    EnvironmentSignals,
    generate_fallback_id,
)
from secure_gate.client.session import SESSION_KEY, SessionStore
from secure_gate.client.storage import ExpiringStorage, LocalStorage, MemoryStorage
from secure_gate.core.errors import StorageUnavailable
from secure_gate.models import FingerprintResult


class BrokenStorage:
    """Private-mode storage: every call fails."""

    def get_item(self, key):
        raise StorageUnavailable("storage disabled")

    def set_item(self, key, value):
        raise StorageUnavailable("storage disabled")

    def remove_item(self, key):
        raise StorageUnavailable("storage disabled")


# ── LocalStorage / ExpiringStorage ────────────────────────────────────────────

def test_local_storage_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "storage.json"
    LocalStorage(path).set_item("k", "v")
    assert LocalStorage(path).get_item("k") == "v"

    LocalStorage(path).remove_item("k")
    assert LocalStorage(path).get_item("k") is None


def test_local_storage_corrupt_file_reads_empty(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")
    storage = LocalStorage(path)
    assert storage.get_item("anything") is None
    storage.set_item("k", "v")
    assert storage.get_item("k") == "v"


def test_expiring_storage_drops_expired_values(clock):
    backing = MemoryStorage()
    cookies = ExpiringStorage(backing, clock)
    cookies.set_item("c", "value", timedelta(minutes=5))
    assert cookies.get_item("c") == "value"
    assert cookies.expires_at("c") == clock() + timedelta(minutes=5)

    clock.advance(minutes=5)
    assert cookies.get_item("c") is None
    assert backing.get_item("c") is None


def test_expiring_storage_discards_malformed_values(clock):
    backing = MemoryStorage()
    backing.set_item("c", "no-expiry-here")
    assert ExpiringStorage(backing, clock).get_item("c") is None
    assert backing.get_item("c") is None


def test_expiring_storage_discards_unparseable_expiry(clock):
    backing = MemoryStorage()
    cookies = ExpiringStorage(backing, clock)
    for stamp in ("²³", "9" * 5000, "9" * 15):
        backing.set_item("c", f"{stamp}|value")
        assert cookies.expires_at("c") is None
        assert cookies.get_item("c") is None
        assert backing.get_item("c") is None


# ── Session marker ───────────────────────────────────────────────────────────

def test_no_session_by_default(session_store):
    assert not session_store.has_valid_session()


def test_session_valid_until_ttl(session_store, clock):
    session_store.store_session_token()
    assert session_store.has_valid_session()

    clock.advance(minutes=59, seconds=59)
    assert session_store.has_valid_session()

    clock.advance(seconds=1)
    assert not session_store.has_valid_session()


def test_clear_session(session_store):
    session_store.store_session_token()
    session_store.clear_session()
    assert not session_store.has_valid_session()


def test_corrupt_session_marker_is_cleared(session_store, storage):
    storage.set_item(SESSION_KEY, "definitely not json")
    assert not session_store.has_valid_session()
    assert storage.get_item(SESSION_KEY) is None


def test_session_with_unavailable_storage(clock):
    store = SessionStore(BrokenStorage(), clock=clock)
    store.store_session_token()
    assert not store.has_valid_session()
    store.clear_session()


# ── Device identifier ────────────────────────────────────────────────────────

def test_device_id_from_provider_is_persisted(device_ids, storage):
    assert device_ids.get_device_id() == "device-abc123"
    assert storage.get_item(DEVICE_ID_KEY) == "device-abc123"


def test_stored_device_id_wins_over_provider(storage):
    storage.set_item(DEVICE_ID_KEY, "stored-id")
    calls = []

    def provider():
        calls.append(1)
        return FingerprintResult(visitor_id="fresh-id", confidence=1.0)

    assert DeviceIdentifier(storage, provider=provider).get_device_id() == "stored-id"
    assert calls == []


def test_device_id_cached_in_memory():
    calls = []

    def provider():
        calls.append(1)
        return FingerprintResult(visitor_id=f"id-{len(calls)}", confidence=0.5)

    ids = DeviceIdentifier(BrokenStorage(), provider=provider)
    assert ids.get_device_id() == "id-1"
    assert ids.get_device_id() == "id-1"
    assert len(calls) == 1


def test_fallback_when_provider_fails(storage):
    def provider():
        raise RuntimeError("fingerprint script blocked")

    ids = DeviceIdentifier(storage, provider=provider, signals=EnvironmentSignals)
    device_id = ids.get_device_id()
    assert device_id.startswith("fallback-")
    assert storage.get_item(DEVICE_ID_KEY) == device_id
    assert ids.get_device_id() == device_id


def test_fallback_ids_are_not_reproducible():
    signals = EnvironmentSignals(user_agent="ua", language="en")
    first = generate_fallback_id(signals)
    second = generate_fallback_id(signals)
    assert first != second
    # Same environment hash, different random/timestamp parts
    assert first.split("-")[1] == second.split("-")[1]


def test_clear_forgets_device_id(device_ids, storage):
    device_ids.get_device_id()
    device_ids.clear()
    assert storage.get_item(DEVICE_ID_KEY) is None
