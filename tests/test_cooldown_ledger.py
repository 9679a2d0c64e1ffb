"""
tests/test_cooldown_ledger.py - Unit tests for the per-device cooldown ledger
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from secure_gate.services.cooldown_ledger import CooldownLedger

COOLDOWN_MS = 30 * 60 * 1000


def test_unknown_device_is_clear(ledger):
    state = ledger.check("never-seen")
    assert not state.in_cooldown
    assert state.remaining_ms == 0
    assert state.last_submission is None


def test_submit_starts_cooldown(ledger, clock):
    result = ledger.submit("dev-1", name="Alice", user_id_field="42")
    assert result.success
    assert result.cooldown_until == clock() + timedelta(minutes=30)

    state = ledger.check("dev-1")
    assert state.in_cooldown
    assert 0 < state.remaining_ms <= COOLDOWN_MS
    assert state.last_submission == clock()


def test_remaining_is_non_increasing(ledger, clock):
    ledger.submit("dev-1")
    previous = COOLDOWN_MS
    for _ in range(10):
        clock.advance(minutes=3, seconds=7)
        remaining = ledger.check("dev-1").remaining_ms
        assert remaining <= previous
        previous = remaining
    assert previous == 0


def test_second_submit_blocked_without_new_record(ledger, memory_store, clock):
    ledger.submit("dev-1")
    clock.advance(minutes=5)

    result = ledger.submit("dev-1", name="Alice")
    assert not result.success
    assert result.in_cooldown
    assert result.remaining_ms == 25 * 60 * 1000
    assert memory_store.count_for_device("dev-1") == 1


def test_cooldown_elapses_and_submit_succeeds_again(ledger, memory_store, clock):
    ledger.submit("dev-1")
    clock.advance(minutes=30)

    assert not ledger.check("dev-1").in_cooldown
    assert ledger.submit("dev-1").success
    assert memory_store.count_for_device("dev-1") == 2


def test_devices_are_independent(ledger):
    ledger.submit("dev-1")
    assert ledger.check("dev-1").in_cooldown
    assert not ledger.check("dev-2").in_cooldown


def test_blank_optional_fields_stored_as_none(ledger, memory_store, clock):
    ledger.submit("dev-1", name="", user_id_field="")
    record = memory_store.latest_since("dev-1", clock() - timedelta(minutes=1))
    assert record.name is None
    assert record.user_id_field is None


def test_purge_expired_keeps_records_within_retention(ledger, memory_store, clock):
    ledger.submit("old")
    clock.advance(minutes=45)
    ledger.submit("recent")
    clock.advance(minutes=20)

    deleted = ledger.purge_expired()
    assert deleted == 1
    assert memory_store.count_for_device("old") == 0
    assert memory_store.count_for_device("recent") == 1


def test_purge_never_unblocks_an_active_cooldown(ledger, clock):
    ledger.submit("dev-1")
    clock.advance(minutes=29)
    ledger.purge_expired()
    assert ledger.check("dev-1").in_cooldown


def test_retention_must_exceed_cooldown(memory_store):
    with pytest.raises(ValueError):
        CooldownLedger(memory_store, cooldown=timedelta(minutes=30), retention=timedelta(minutes=30))
