"""
secure_gate/clients/ledger_store.py - Append-only submission record stores
Two implementations of the same four calls:
  - InMemorySubmissionStore: process-local, for development and tests
  - SupabaseSubmissionStore: the device_submissions table via PostgREST
Rows are only ever inserted or deleted by the retention job; never updated.
"""
from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Any, Optional, Protocol

import httpx
from loguru import logger

from secure_gate.config import Settings
from secure_gate.core.errors import ConfigurationError, StoreError
from secure_gate.models import SubmissionRecord
from secure_gate.utils.timezone import ensure_utc, parse_iso


class SubmissionStore(Protocol):
    def latest_since(self, device_id: str, since: datetime) -> Optional[SubmissionRecord]:
        """Most recent record for device_id with submitted_at >= since."""
        ...

    def insert(self, record: SubmissionRecord) -> None:
        ...

    def delete_before(self, cutoff: datetime) -> int:
        """Delete records with submitted_at < cutoff. Returns count deleted."""
        ...


# ──────────────────────────────────────────────────────────────────────────────
# In-memory store
# ──────────────────────────────────────────────────────────────────────────────

class InMemorySubmissionStore:
    def __init__(self) -> None:
        self._records: list[SubmissionRecord] = []
        self._lock = threading.Lock()

    def latest_since(self, device_id: str, since: datetime) -> Optional[SubmissionRecord]:
        since = ensure_utc(since)
        with self._lock:
            matches = [
                r for r in self._records
                if r.device_id == device_id and ensure_utc(r.submitted_at) >= since
            ]
        if not matches:
            return None
        return max(matches, key=lambda r: ensure_utc(r.submitted_at))

    def insert(self, record: SubmissionRecord) -> None:
        with self._lock:
            self._records.append(record)

    def delete_before(self, cutoff: datetime) -> int:
        cutoff = ensure_utc(cutoff)
        with self._lock:
            keep = [r for r in self._records if ensure_utc(r.submitted_at) >= cutoff]
            deleted = len(self._records) - len(keep)
            self._records = keep
        return deleted

    def count_for_device(self, device_id: str) -> int:
        """Records held for device_id. Inspection helper, not part of the store protocol."""
        with self._lock:
            return sum(1 for r in self._records if r.device_id == device_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# ──────────────────────────────────────────────────────────────────────────────
# Supabase (PostgREST) store
# ──────────────────────────────────────────────────────────────────────────────

_RECORD_COLUMNS = "device_id,submitted_at,name,user_id_field"


class SupabaseSubmissionStore:
    """
    Talks to <supabase_url>/rest/v1/<table> with the project API key.
    Every transport or HTTP error is raised as StoreError so the router can
    answer 500 {success: false, error}.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str = "device_submissions",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.table = table
        self._client = httpx.Client(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def _request(
        self,
        method: str,
        operation: str,
        params: Optional[dict[str, str]] = None,
        json_body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        start = time.monotonic()
        try:
            response = self._client.request(
                method, f"/{self.table}", params=params, json=json_body, headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = _postgrest_message(exc.response)
            logger.error(f"Supabase {operation} failed ({exc.response.status_code}): {message}")
            raise StoreError(message) from exc
        except httpx.HTTPError as exc:
            logger.error(f"Supabase {operation} transport error: {exc}")
            raise StoreError(f"Submission store unreachable: {exc}") from exc
        latency_ms = (time.monotonic() - start) * 1000
        logger.debug(f"Supabase {operation} OK in {latency_ms:.1f}ms")
        return response

    def latest_since(self, device_id: str, since: datetime) -> Optional[SubmissionRecord]:
        response = self._request("GET", "select", params={
            "select": _RECORD_COLUMNS,
            "device_id": f"eq.{device_id}",
            "submitted_at": f"gte.{ensure_utc(since).isoformat()}",
            "order": "submitted_at.desc",
            "limit": "1",
        })
        rows = response.json()
        if not rows:
            return None
        return _row_to_record(rows[0])

    def insert(self, record: SubmissionRecord) -> None:
        self._request("POST", "insert", json_body={
            "device_id": record.device_id,
            "submitted_at": ensure_utc(record.submitted_at).isoformat(),
            "name": record.name,
            "user_id_field": record.user_id_field,
        }, headers={"Prefer": "return=minimal"})

    def delete_before(self, cutoff: datetime) -> int:
        response = self._request("DELETE", "delete", params={
            "submitted_at": f"lt.{ensure_utc(cutoff).isoformat()}",
        }, headers={"Prefer": "return=representation"})
        return len(response.json() or [])

    def close(self) -> None:
        self._client.close()


def _row_to_record(row: dict[str, Any]) -> SubmissionRecord:
    return SubmissionRecord(
        device_id=row["device_id"],
        submitted_at=parse_iso(row["submitted_at"]),
        name=row.get("name"),
        user_id_field=row.get("user_id_field"),
    )


def _postgrest_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"


# ──────────────────────────────────────────────────────────────────────────────
# Factory
# ──────────────────────────────────────────────────────────────────────────────

def build_store(settings: Settings) -> SubmissionStore:
    """Build the configured store. Raises ConfigurationError if Supabase is unset."""
    if settings.store_backend == "memory":
        logger.warning("Using in-memory submission store; cooldowns reset on restart.")
        return InMemorySubmissionStore()

    if not settings.supabase_url or not settings.supabase_key:
        raise ConfigurationError(
            "Supabase configuration is missing. Set SUPABASE_URL and SUPABASE_KEY."
        )
    return SupabaseSubmissionStore(
        url=settings.supabase_url,
        api_key=settings.supabase_key,
        table=settings.supabase_table,
        timeout=settings.supabase_timeout_seconds,
    )
