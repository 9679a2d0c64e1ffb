"""
secure_gate/client/gate_api.py - Async HTTP client for the gate endpoints
check() fails open: any error reads as "not in cooldown".
submit() and notify() fail closed: any error is Outcome.failed.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger

from secure_gate.models import CooldownState, Outcome
from secure_gate.utils.timezone import parse_iso

COOLDOWN_PATH = "/api/check-device-cooldown"
NOTIFY_PATH = "/api/send-to-telegram"


class GateApiClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def _post(self, path: str, body: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        response = await self._client.post(path, json=body)
        try:
            data = response.json()
        except ValueError:
            data = {}
        return response.status_code, data if isinstance(data, dict) else {}

    async def check_cooldown(self, device_id: str) -> CooldownState:
        try:
            status, data = await self._post(COOLDOWN_PATH, {"device_id": device_id, "action": "check"})
        except httpx.HTTPError as exc:
            logger.warning(f"Cooldown check failed, treating as clear: {exc}")
            return CooldownState.clear()
        if status != 200:
            logger.warning(f"Cooldown check answered {status}, treating as clear: {data.get('error')}")
            return CooldownState.clear()
        if not data.get("inCooldown"):
            return CooldownState.clear()
        try:
            remaining = int(data.get("remaining") or 0)
            last = data.get("lastSubmission")
            return CooldownState(
                in_cooldown=remaining > 0,
                remaining_ms=max(0, remaining),
                last_submission=parse_iso(last) if last else None,
            )
        except (AttributeError, OverflowError, TypeError, ValueError) as exc:
            logger.warning(f"Unreadable cooldown response, treating as clear: {exc}")
            return CooldownState.clear()

    async def submit(
        self,
        device_id: str,
        name: Optional[str] = None,
        user_id_field: Optional[str] = None,
    ) -> Outcome:
        body = {"device_id": device_id, "action": "submit", "name": name, "user_id_field": user_id_field}
        try:
            status, data = await self._post(COOLDOWN_PATH, body)
        except httpx.HTTPError as exc:
            logger.error(f"Cooldown submit failed: {exc}")
            return Outcome.failed(f"Cooldown service unreachable: {exc}")
        try:
            if status == 403 and data.get("inCooldown"):
                return Outcome.rejected("COOLDOWN_ACTIVE", int(data.get("remaining") or 0))
            if status != 200 or not data.get("success"):
                return Outcome.failed(str(data.get("error") or f"HTTP {status}"))
            until = data.get("cooldownUntil")
            return Outcome.ok(cooldown_until=parse_iso(until) if until else None)
        except (AttributeError, OverflowError, TypeError, ValueError) as exc:
            logger.error(f"Unreadable cooldown submit response: {exc}")
            return Outcome.failed(f"Unreadable cooldown response: {exc}")

    async def notify(self, values: dict[str, str]) -> Outcome:
        try:
            status, data = await self._post(NOTIFY_PATH, values)
        except httpx.HTTPError as exc:
            logger.error(f"Notification request failed: {exc}")
            return Outcome.failed(f"Notification service unreachable: {exc}")
        if status != 200 or not data.get("success"):
            return Outcome.failed(str(data.get("error") or f"HTTP {status}"))
        return Outcome.ok()

    async def aclose(self) -> None:
        await self._client.aclose()
