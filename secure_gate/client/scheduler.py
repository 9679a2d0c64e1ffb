"""
secure_gate/client/scheduler.py - Scoped, cancellable timers on the event loop
Every timer belongs to a TaskScope. Closing the scope cancels all of its
tasks, so nothing scheduled for a state can fire after that state is left.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

from secure_gate.core import logging as app_logging

Callback = Callable[[], Awaitable[None]]


class TaskScope:
    def __init__(self, name: str = "scope") -> None:
        self.name = name
        self.closed = False
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[None], name: Optional[str] = None) -> asyncio.Task:
        if self.closed:
            # Close the coroutine so it is not reported as never awaited
            close = getattr(coro, "close", None)
            if close is not None:
                close()
            raise RuntimeError(f"TaskScope {self.name!r} is closed")
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def after(self, delay: float, callback: Callback, name: Optional[str] = None) -> asyncio.Task:
        """Run callback once, `delay` seconds from now."""
        async def _delayed() -> None:
            await asyncio.sleep(delay)
            if self.closed:
                return
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                app_logging.log_error("scheduler", name or "timer", exc)
        return self.spawn(_delayed(), name=name)

    def every(self, interval: float, callback: Callback, name: Optional[str] = None) -> asyncio.Task:
        """Run callback every `interval` seconds until the scope closes."""
        async def _repeat() -> None:
            while not self.closed:
                await asyncio.sleep(interval)
                if self.closed:
                    break
                try:
                    await callback()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    app_logging.log_error("scheduler", name or "interval", exc)
        return self.spawn(_repeat(), name=name)

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def cancel(self) -> list[asyncio.Task]:
        """
        Close the scope and cancel its tasks. The calling task, if it belongs
        to this scope, is left to return on its own.
        """
        self.closed = True
        current = asyncio.current_task() if _loop_running() else None
        cancelled = []
        for task in list(self._tasks):
            if task is current or task.done():
                continue
            task.cancel()
            cancelled.append(task)
        if cancelled:
            logger.debug(f"Cancelled {len(cancelled)} task(s) in scope {self.name!r}")
        return cancelled

    async def aclose(self) -> None:
        tasks = self.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "TaskScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
