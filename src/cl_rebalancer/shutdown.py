"""Cooperative cancellation and graceful shutdown.

A ``CancellationToken`` is passed explicitly to everything that may need
to stop early. ``GracefulShutdown`` owns one token, remembers the single
in-flight operation and, on shutdown, waits for that operation instead of
cancelling it before running the registered cleanups.
"""

from __future__ import annotations

import asyncio
import inspect
import signal
import sys
from typing import Any, Awaitable, Callable, List, Optional, TypeVar, Union

import structlog

from cl_rebalancer.errors import OperationCancelled

logger = structlog.get_logger()

_T = TypeVar("_T")

Cleanup = Callable[[], Union[Awaitable[Any], None]]


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "shutdown requested") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if woken by cancellation."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0))
            return True
        except asyncio.TimeoutError:
            return False


class GracefulShutdown:
    """Tracks the in-flight operation and runs cleanups once on shutdown."""

    def __init__(self, token: Optional[CancellationToken] = None) -> None:
        self.token = token or CancellationToken()
        self._current: Optional[asyncio.Task] = None
        self._cleanups: List[tuple] = []
        self._finished = False

    @property
    def in_flight(self) -> Optional[asyncio.Task]:
        if self._current is not None and not self._current.done():
            return self._current
        return None

    def register_cleanup(self, name: str, cleanup: Cleanup) -> None:
        self._cleanups.append((name, cleanup))

    async def track(self, operation: Awaitable[_T]) -> _T:
        """Run ``operation`` as the current in-flight task and return its result."""
        task = asyncio.ensure_future(operation)
        self._current = task
        try:
            return await task
        finally:
            if self._current is task:
                self._current = None

    def request(self, reason: str = "signal received") -> None:
        if not self.token.is_cancelled:
            logger.info("shutdown_requested", reason=reason)
        self.token.cancel(reason)

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self.request, sig.name)
        else:
            try:
                signal.signal(
                    signal.SIGTERM,
                    lambda *_: loop.call_soon_threadsafe(self.request, "SIGTERM"),
                )
            except (AttributeError, ValueError):
                logger.debug("sigterm_handler_unavailable")

    async def shutdown(self) -> None:
        """Stop scheduling, let the in-flight operation settle, then clean up."""
        if self._finished:
            return
        self._finished = True
        self.token.cancel()

        pending = self.in_flight
        if pending is not None:
            logger.info("waiting_for_in_flight_operation")
            try:
                await asyncio.shield(pending)
            except OperationCancelled:
                pass
            except Exception as exc:
                logger.error("in_flight_operation_failed", error=str(exc))

        for name, cleanup in reversed(self._cleanups):
            try:
                outcome = cleanup()
                if inspect.isawaitable(outcome):
                    await outcome
                logger.debug("cleanup_done", name=name)
            except Exception as exc:
                logger.error("cleanup_failed", name=name, error=str(exc))
        logger.info("shutdown_complete")
