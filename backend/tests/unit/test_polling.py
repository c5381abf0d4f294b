"""
Unit tests for poll_until.

WHAT: Success, timeout with last value, async fetch, parameter validation
WHY: Long-poll endpoints rely on bounded waits
HOW: Counters as fetch functions and tiny intervals
"""

import pytest

from bazaar.services.polling import PollTimeoutError, poll_until


@pytest.mark.unit
class TestPollUntil:

    @pytest.mark.asyncio
    async def test_returns_first_matching_value(self):
        values = iter([1, 2, 3, 4])
        result = await poll_until(lambda: next(values), lambda v: v >= 3, max_wait=1, interval=0.001)
        assert result == 3

    @pytest.mark.asyncio
    async def test_immediate_match_does_not_sleep(self):
        calls = []

        def fetch():
            calls.append(1)
            return "complete"

        assert await poll_until(fetch, lambda v: v == "complete", max_wait=0, interval=10) == "complete"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_async_fetch(self):
        state = {"n": 0}

        async def fetch():
            state["n"] += 1
            return state["n"]

        assert await poll_until(fetch, lambda v: v == 2, max_wait=1, interval=0.001) == 2

    @pytest.mark.asyncio
    async def test_timeout_carries_last_value(self):
        with pytest.raises(PollTimeoutError) as exc_info:
            await poll_until(lambda: "searching", lambda v: v == "complete",
                             max_wait=0.05, interval=0.01, backoff=2, max_interval=0.02)

        assert exc_info.value.last_value == "searching"
        assert exc_info.value.attempts >= 2
        assert isinstance(exc_info.value, TimeoutError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"max_wait": -1},
        {"interval": 0},
        {"backoff": 0.5},
        {"max_interval": 0},
    ])
    async def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            await poll_until(lambda: 1, lambda v: True, **kwargs)
