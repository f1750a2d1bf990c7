from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Coroutine, TypeVar

import anyio

T = TypeVar("T")


def run_async(coro: Coroutine[object, object, T], *, timeout: float | None = None) -> T:
    """
    Run an async coroutine from sync code without asyncio.run in request threads.

    - In FastAPI sync endpoints, uses anyio.from_thread.run to execute on the main loop.
    - Falls back to anyio.run when no AnyIO worker thread is available (e.g., CLI/tests).
    - Raises if called from an async context in the same thread (use await instead).
    """

    async def _runner() -> T:
        if timeout is not None:
            with anyio.fail_after(timeout):
                return await coro
        return await coro

    try:
        return anyio.from_thread.run(_runner)
    except RuntimeError:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return anyio.run(_runner)
        raise RuntimeError("run_async called from async context; use await instead")


class OperationCancelled(Exception):
    """A cancellable operation was stopped through its token."""

    def __init__(self, reason: str = "Operation cancelled"):
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """
    Explicit cancellation handle threaded through long-running calls.

    The owner calls cancel(); the worker either checks raise_if_cancelled()
    between steps or wraps an awaitable in run(), which abandons the
    underlying task as soon as the token fires.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason = "Operation cancelled"
        self._waiters: list[asyncio.Future] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "Operation cancelled") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(self._reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, raising OperationCancelled if the token fires first."""
        task = asyncio.ensure_future(awaitable)
        if self._cancelled:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise OperationCancelled(self._reason)

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._waiters.remove(waiter)

        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise OperationCancelled(self._reason)
        return task.result()
