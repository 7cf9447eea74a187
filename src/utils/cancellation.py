"""Cooperative cancellation for a single generation turn."""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from src.utils.exceptions import GenerationCancelledError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CancelToken:
    """A one-shot cancellation flag threaded through an entire turn.

    Retrieval, streaming and classification all poll the same token. Once
    cancelled it stays cancelled; a new turn gets a new token.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._cancelled

    @property
    def reason(self) -> str | None:
        """Reason passed to cancel(), if any."""
        return self._reason

    def cancel(self, reason: str = "cancelled by user") -> None:
        """Mark the token cancelled and run registered callbacks once."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.info("Generation cancelled: %s", reason)
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("Cancel callback failed (non-fatal): %s", e, exc_info=True)

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback run when the token is cancelled.

        If the token is already cancelled the callback runs immediately.
        """
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Unregister a callback added with on_cancel; unknown callbacks are ignored."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def raise_if_cancelled(self) -> None:
        """Raise GenerationCancelledError if the token has been cancelled."""
        if self._cancelled:
            raise GenerationCancelledError(self._reason or "Generation cancelled")


def is_cancelled(token: CancelToken | None) -> bool:
    """Return True when an optional token is present and cancelled."""
    return token is not None and token.cancelled


async def await_cancellable(awaitable: Awaitable[T], token: CancelToken | None) -> T:
    """Await a coroutine, abandoning it as soon as the token is cancelled.

    Raises:
        GenerationCancelledError: If the token is (or becomes) cancelled first.
    """
    if token is None:
        return await awaitable
    if token.cancelled:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()

    cancelled = asyncio.Event()
    token.on_cancel(cancelled.set)
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancelled.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        token.remove_callback(cancelled.set)
    if not task.done():
        task.cancel()
        raise GenerationCancelledError(token.reason or "Generation cancelled")
    return task.result()
