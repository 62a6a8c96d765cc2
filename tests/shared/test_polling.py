"""Tests for shared/polling.py - bounded polling."""

from __future__ import annotations

import pytest
from unittest.mock import AsyncMock

from benchnet.shared.polling import PollExhausted, poll_until


def scripted(*values):
    """Probe returning ``values`` in order, raising the exceptions among them."""
    calls = []

    async def probe():
        value = values[min(len(calls), len(values) - 1)]
        calls.append(value)
        if isinstance(value, Exception):
            raise value
        return value

    return probe, calls


class TestPollUntil:
    @pytest.mark.asyncio
    async def test_returns_first_non_none(self):
        probe, calls = scripted(None, None, "ready")
        sleep = AsyncMock()
        outcome = await poll_until(probe, attempts=10, interval=1.5, sleep=sleep)
        assert outcome.value == "ready"
        assert outcome.attempts == 3
        assert len(calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.5, 1.5]

    @pytest.mark.asyncio
    async def test_exhausts_exact_budget(self):
        probe, calls = scripted(None)
        sleep = AsyncMock()
        with pytest.raises(PollExhausted) as excinfo:
            await poll_until(probe, attempts=10, interval=1, sleep=sleep)
        assert len(calls) == 10
        assert sleep.await_count == 9
        assert excinfo.value.attempts == 10

    @pytest.mark.asyncio
    async def test_retryable_errors_count_as_attempts(self):
        probe, calls = scripted(KeyError("a"), KeyError("b"), 7)
        outcome = await poll_until(probe, attempts=3, interval=0, retry_on=(KeyError,), sleep=AsyncMock())
        assert outcome.value == 7
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_last_error_kept(self):
        error = KeyError("last")
        probe, _ = scripted(KeyError("first"), error)
        with pytest.raises(PollExhausted) as excinfo:
            await poll_until(probe, attempts=2, interval=0, retry_on=(KeyError,), sleep=AsyncMock())
        assert excinfo.value.last_error is error

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        probe, calls = scripted(RuntimeError("fatal"), 1)
        with pytest.raises(RuntimeError):
            await poll_until(probe, attempts=5, interval=0, retry_on=(KeyError,), sleep=AsyncMock())
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_zero_is_a_value(self):
        probe, _ = scripted(0)
        outcome = await poll_until(probe, attempts=1, interval=0)
        assert outcome.value == 0

    @pytest.mark.asyncio
    async def test_rejects_empty_budget(self):
        probe, _ = scripted(1)
        with pytest.raises(ValueError):
            await poll_until(probe, attempts=0, interval=0)
