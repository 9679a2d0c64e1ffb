"""
secure_gate/client/context.py - Explicit dependency bundle for one gate page
Owns the device id cache, the session marker, the cooldown backend, the
notification sink and the form schema. Built once per page load and handed
to the AdmissionController; tests build one from fakes.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional

import httpx
from pydantic import BaseModel, Field

from secure_gate.client.backends import (
    ClientNotificationSink,
    CooldownBackend,
    HttpNotificationSink,
    LocalCooldownBackend,
    RemoteCooldownBackend,
)
from secure_gate.client.device_id import DeviceIdentifier
from secure_gate.client.gate_api import GateApiClient
from secure_gate.client.session import SessionStore
from secure_gate.client.storage import ExpiringStorage, KeyValueStorage, LocalStorage, MemoryStorage
from secure_gate.config import Settings
from secure_gate.core.errors import ConfigurationError
from secure_gate.core.tokens import validate_token
from secure_gate.models import FormSchema, TokenValidation, build_form_schemas
from secure_gate.utils.timezone import Clock, utc_now


class GateTiming(BaseModel):
    validation_delay: float = Field(default=1.5, ge=0)
    poll_interval: float = Field(default=10.0, gt=0)
    tick_interval: float = Field(default=1.0, gt=0)


class GateContext:
    def __init__(
        self,
        *,
        device_ids: DeviceIdentifier,
        session: SessionStore,
        cooldown: CooldownBackend,
        form: FormSchema,
        token_secret: str,
        token_ttl: timedelta = timedelta(minutes=60),
        clock_skew: timedelta = timedelta(seconds=30),
        sink: Optional[ClientNotificationSink] = None,
        timing: Optional[GateTiming] = None,
        clock: Clock = utc_now,
        api: Optional[GateApiClient] = None,
    ) -> None:
        self.device_ids = device_ids
        self.session = session
        self.cooldown = cooldown
        self.form = form
        self.sink = sink
        self.timing = timing or GateTiming()
        self.clock = clock
        self.api = api
        self._token_secret = token_secret
        self._token_ttl = token_ttl
        self._clock_skew = clock_skew

    def validate_token(self, token: Optional[str]) -> TokenValidation:
        return validate_token(
            token,
            secret=self._token_secret,
            ttl=self._token_ttl,
            now=self.clock(),
            clock_skew=self._clock_skew,
        )

    async def aclose(self) -> None:
        if self.api is not None:
            await self.api.aclose()


def build_gate_context(
    settings: Settings,
    *,
    storage: Optional[KeyValueStorage] = None,
    cookie_storage: Optional[KeyValueStorage] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Clock = utc_now,
) -> GateContext:
    """
    Wire a GateContext from settings. Raises ConfigurationError when the
    token secret is unset.
    The cookie mirror lives in its own file so that clearing the main
    storage leaves it in place.
    """
    if not settings.token_secret:
        raise ConfigurationError("TOKEN_SECRET is not configured.")

    if storage is None:
        storage = LocalStorage(settings.client_storage_path) if settings.client_storage_path else MemoryStorage()

    api = GateApiClient(
        settings.gate_api_base_url,
        timeout=settings.gate_api_timeout_seconds,
        transport=transport,
    )
    cooldown_window = timedelta(minutes=settings.cooldown_minutes)
    backend: CooldownBackend
    if settings.cooldown_backend == "remote":
        backend = RemoteCooldownBackend(api)
    elif settings.cooldown_backend == "local+cookie":
        if cookie_storage is None:
            cookie_storage = (
                LocalStorage(settings.client_cookie_path) if settings.client_cookie_path else MemoryStorage()
            )
        backend = LocalCooldownBackend(
            storage, cooldown_window, mirror=ExpiringStorage(cookie_storage, clock), clock=clock,
        )
    else:
        backend = LocalCooldownBackend(storage, cooldown_window, clock=clock)

    schemas = build_form_schemas(
        max_name_length=settings.max_name_length,
        max_id_length=settings.max_id_length,
        max_week_length=settings.max_week_length,
    )
    return GateContext(
        device_ids=DeviceIdentifier(storage),
        session=SessionStore(storage, ttl=timedelta(minutes=settings.session_ttl_minutes), clock=clock),
        cooldown=backend,
        form=schemas[settings.form_schema],
        token_secret=settings.token_secret,
        token_ttl=timedelta(minutes=settings.token_ttl_minutes),
        clock_skew=timedelta(seconds=settings.token_clock_skew_seconds),
        sink=HttpNotificationSink(api),
        timing=GateTiming(
            validation_delay=settings.validation_delay_seconds,
            poll_interval=settings.cooldown_poll_seconds,
            tick_interval=settings.countdown_tick_seconds,
        ),
        clock=clock,
        api=api,
    )
