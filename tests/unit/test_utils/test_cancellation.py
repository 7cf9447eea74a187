"""Tests for CancelToken and await_cancellable."""

import asyncio

import pytest

from src.utils.cancellation import CancelToken, await_cancellable, is_cancelled
from src.utils.exceptions import GenerationCancelledError


class TestCancelToken:
    """Tests for the token itself."""

    def test_starts_uncancelled(self):
        token = CancelToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_runs_callbacks_once(self):
        token = CancelToken()
        calls = []
        token.on_cancel(lambda: calls.append(1))
        token.cancel("stop")
        token.cancel("again")
        assert calls == [1]
        assert token.reason == "stop"

    def test_remove_callback(self):
        token = CancelToken()
        calls = []

        def callback():
            calls.append(1)

        token.on_cancel(callback)
        token.remove_callback(callback)
        token.remove_callback(callback)
        token.cancel()
        assert calls == []

    def test_raise_if_cancelled(self):
        token = CancelToken()
        token.cancel()
        with pytest.raises(GenerationCancelledError):
            token.raise_if_cancelled()

    def test_is_cancelled_accepts_none(self):
        assert is_cancelled(None) is False


class TestAwaitCancellable:
    """Tests for racing a coroutine against the token."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work():
            return 42

        assert await await_cancellable(work(), CancelToken()) == 42

    @pytest.mark.asyncio
    async def test_without_token(self):
        async def work():
            return "ok"

        assert await await_cancellable(work(), None) == "ok"

    @pytest.mark.asyncio
    async def test_already_cancelled(self):
        token = CancelToken()
        token.cancel()

        async def work():
            return 1

        with pytest.raises(GenerationCancelledError):
            await await_cancellable(work(), token)

    @pytest.mark.asyncio
    async def test_cancel_while_waiting(self):
        token = CancelToken()
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        async def cancel_soon():
            await started.wait()
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(GenerationCancelledError):
            await await_cancellable(slow(), token)
        await canceller

    @pytest.mark.asyncio
    async def test_propagates_errors(self):
        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await await_cancellable(broken(), CancelToken())

    @pytest.mark.asyncio
    async def test_repeated_awaits_leave_no_callbacks_behind(self):
        token = CancelToken()

        async def work():
            return 1

        for _ in range(5):
            await await_cancellable(work(), token)

        assert token._callbacks == []

    @pytest.mark.asyncio
    async def test_errors_leave_no_callbacks_behind(self):
        token = CancelToken()

        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await await_cancellable(broken(), token)
        assert token._callbacks == []
