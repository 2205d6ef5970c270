"""
Unit tests for the request dispatcher.

Tests per-service rate budgets, priority ordering, retry-after handling,
error propagation and cancellation. Windows are kept short (0.2s) so the
timing tests stay fast.
"""

import asyncio

import pytest
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from collateral_risk.core.dispatcher import RequestDispatcher, RetryAfter, ServiceRule
from collateral_risk.core.exceptions import ConfigurationError


def recording_op(log, name, result=None):
    """Operation that records (name, admission time) and returns result or name."""
    async def operation():
        log.append((name, asyncio.get_running_loop().time()))
        return name if result is None else result
    return operation


class TestServiceRules:
    """Tests for rule validation and construction."""

    @pytest.mark.unit
    @pytest.mark.parametrize("rate,window", [(0, 1), (-1, 1), (1, 0), (1, -0.5)])
    def test_invalid_rule(self, rate, window):
        with pytest.raises(ConfigurationError):
            ServiceRule(rate, window)

    @pytest.mark.unit
    @pytest.mark.smoke
    def test_from_settings(self):
        dispatcher = RequestDispatcher.from_settings()
        assert {"coingecko", "uniswap", "sushiswap", "ethplorer", "rpc"} <= set(dispatcher.services)
        assert dispatcher.rule("coingecko") == ServiceRule(10, 1.0, 1)
        assert dispatcher.rule("uniswap") == ServiceRule(60, 10.0, 1)

    @pytest.mark.unit
    def test_from_settings_malformed(self):
        with pytest.raises(ConfigurationError):
            RequestDispatcher.from_settings({"svc": {"rate": 1}})

    @pytest.mark.unit
    def test_no_rules(self):
        with pytest.raises(ConfigurationError):
            RequestDispatcher({})


class TestSubmit:
    """Tests for admission and results."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_returns_operation_result(self, dispatcher_factory):
        dispatcher = dispatcher_factory(rate=5)
        log = []
        assert await dispatcher.submit("svc", "r1", recording_op(log, "a", {"ok": True})) == {"ok": True}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_service(self, dispatcher_factory):
        dispatcher = dispatcher_factory()
        with pytest.raises(ConfigurationError):
            await dispatcher.submit("nope", "r1", recording_op([], "a"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rate_budget_spaces_admissions(self, dispatcher_factory):
        """1 request per 0.2s window: 5 requests take at least 4 windows."""
        window = 0.2
        dispatcher = dispatcher_factory(rate=1, window=window)
        log = []
        results = await asyncio.gather(*(
            dispatcher.submit("svc", f"r{i}", recording_op(log, i)) for i in range(5)
        ))

        assert sorted(results) == [0, 1, 2, 3, 4]
        times = [t for _, t in log]
        gaps = [t1 - t0 for t0, t1 in zip(times, times[1:])]
        assert all(gap >= window * 0.95 for gap in gaps), gaps

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_burst_within_budget_not_delayed(self, dispatcher_factory):
        dispatcher = dispatcher_factory(rate=10, window=5)
        log = []
        loop = asyncio.get_running_loop()
        start = loop.time()
        await asyncio.gather(*(dispatcher.submit("svc", None, recording_op(log, i)) for i in range(10)))
        assert loop.time() - start < 1.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_priority_order(self, dispatcher_factory):
        """Lower priority value drains first, ties in arrival order."""
        dispatcher = dispatcher_factory(rate=1, window=0.1)
        log = []
        first = asyncio.create_task(dispatcher.submit("svc", "first", recording_op(log, "first")))
        await asyncio.sleep(0)
        late = [
            asyncio.create_task(dispatcher.submit("svc", "low", recording_op(log, "low"), priority=5)),
            asyncio.create_task(dispatcher.submit("svc", "mid-a", recording_op(log, "mid-a"), priority=2)),
            asyncio.create_task(dispatcher.submit("svc", "high", recording_op(log, "high"), priority=0)),
            asyncio.create_task(dispatcher.submit("svc", "mid-b", recording_op(log, "mid-b"), priority=2)),
        ]
        await asyncio.gather(first, *late)

        order = [name for name, _ in log if name != "first"]
        assert order == ["high", "mid-a", "mid-b", "low"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_in_flight_id(self, dispatcher_factory):
        dispatcher = dispatcher_factory(rate=5)
        release = asyncio.Event()

        async def blocking():
            await release.wait()
            return "done"

        task = asyncio.create_task(dispatcher.submit("svc", "same", blocking))
        await asyncio.sleep(0.01)
        with pytest.raises(ConfigurationError):
            await dispatcher.submit("svc", "same", recording_op([], "dup"))
        release.set()
        assert await task == "done"
        # id is free again once the first request finished
        assert await dispatcher.submit("svc", "same", recording_op([], "again")) == "again"


class TestRetryAfter:
    """Tests for provider throttling."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retry_after_then_success(self, dispatcher_factory):
        dispatcher = dispatcher_factory(rate=5, window=1)
        calls = []

        async def throttled_once():
            calls.append(asyncio.get_running_loop().time())
            if len(calls) == 1:
                return RetryAfter(0.2)
            return "ok"

        loop = asyncio.get_running_loop()
        start = loop.time()
        result = await dispatcher.submit("svc", "r1", throttled_once)

        assert result == "ok"
        assert len(calls) == 2
        assert loop.time() - start >= 0.19
        assert calls[1] - calls[0] >= 0.19

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retry_consumes_budget(self, dispatcher_factory):
        """A retried request takes a fresh slot: with rate 1 the retry waits a full window."""
        window = 0.2
        dispatcher = dispatcher_factory(rate=1, window=window)
        calls = []

        async def throttled_once():
            calls.append(asyncio.get_running_loop().time())
            return RetryAfter(0) if len(calls) == 1 else "ok"

        assert await dispatcher.submit("svc", "r1", throttled_once) == "ok"
        assert calls[1] - calls[0] >= window * 0.95


class TestErrorsAndCancellation:
    """Tests for exception propagation and cancelled waiters."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exception_propagates_unchanged(self, dispatcher_factory):
        dispatcher = dispatcher_factory(rate=5)
        error = ValueError("provider exploded")

        async def failing():
            raise error

        with pytest.raises(ValueError) as exc_info:
            await dispatcher.submit("svc", "r1", failing)
        assert exc_info.value is error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_block_others(self, dispatcher_factory):
        dispatcher = dispatcher_factory(rate=1, window=0.2)
        log = []

        first = asyncio.create_task(dispatcher.submit("svc", "first", recording_op(log, "first")))
        await asyncio.sleep(0)
        doomed = asyncio.create_task(dispatcher.submit("svc", "doomed", recording_op(log, "doomed")))
        survivor = asyncio.create_task(dispatcher.submit("svc", "survivor", recording_op(log, "survivor")))
        await asyncio.sleep(0.05)

        doomed.cancel()
        with pytest.raises(asyncio.CancelledError):
            await doomed

        assert await first == "first"
        assert await survivor == "survivor"
        assert [name for name, _ in log] == ["first", "survivor"]
        assert dispatcher.pending("svc") == 0
        # cancelled id can be reused
        assert await dispatcher.submit("svc", "doomed", recording_op(log, "retry")) == "retry"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wait_for_timeout_is_isolated(self, dispatcher_factory):
        """An external deadline on one request leaves the others untouched."""
        dispatcher = dispatcher_factory(rate=1, window=0.3)
        log = []

        await dispatcher.submit("svc", "warmup", recording_op(log, "warmup"))
        other = asyncio.create_task(dispatcher.submit("svc", "other", recording_op(log, "other")))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                dispatcher.submit("svc", "late", recording_op(log, "late")), timeout=0.05
            )
        assert await other == "other"
        assert "late" not in [name for name, _ in log]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_aclose_cancels_waiters(self, dispatcher_factory):
        dispatcher = dispatcher_factory(rate=1, window=5)
        await dispatcher.submit("svc", "a", recording_op([], "a"))
        waiting = asyncio.create_task(dispatcher.submit("svc", "b", recording_op([], "b")))
        await asyncio.sleep(0.01)
        assert dispatcher.pending("svc") == 1

        await dispatcher.aclose()
        with pytest.raises(asyncio.CancelledError):
            await waiting
