"""
Unit tests for ResponseCorrelator.

Covers delivery to a waiting caller, early replies, late replies after a
timeout, duplicate waiters and bulk failure when a stream drops.
"""
import asyncio

import pytest

from conduit_service.core.errors import ConnectionFailedError, RequestTimeoutError
from conduit_service.mcp.correlator import ResponseCorrelator


class TestDelivery:

    @pytest.mark.asyncio
    async def test_reply_resolves_waiter(self):
        correlator = ResponseCorrelator()
        waiter = asyncio.create_task(correlator.wait(1, timeout=1.0))
        await asyncio.sleep(0)
        assert correlator.pending_count == 1
        assert correlator.deliver(1, {"id": 1, "result": {}}) is True
        assert await waiter == {"id": 1, "result": {}}
        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_ids_match_across_int_and_str(self):
        correlator = ResponseCorrelator()
        waiter = asyncio.create_task(correlator.wait(5, timeout=1.0))
        await asyncio.sleep(0)
        correlator.deliver("5", {"id": "5"})
        assert (await waiter)["id"] == "5"

    @pytest.mark.asyncio
    async def test_early_reply_is_parked_then_claimed(self):
        correlator = ResponseCorrelator()
        assert correlator.deliver(3, {"id": 3}) is True
        assert correlator.parked_count == 1
        assert await correlator.wait(3, timeout=0.1) == {"id": 3}
        assert correlator.parked_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_early_reply_dropped(self):
        correlator = ResponseCorrelator()
        correlator.deliver(3, {"id": 3, "n": 1})
        assert correlator.deliver(3, {"id": 3, "n": 2}) is False
        assert (await correlator.wait(3, timeout=0.1))["n"] == 1

    @pytest.mark.asyncio
    async def test_second_reply_for_resolved_waiter_is_ignored(self):
        correlator = ResponseCorrelator()
        waiter = asyncio.create_task(correlator.wait(1, timeout=1.0))
        await asyncio.sleep(0)
        correlator.deliver(1, {"n": 1})
        assert correlator.deliver(1, {"n": 2}) is False
        assert (await waiter)["n"] == 1

    def test_parked_buffer_is_bounded(self):
        correlator = ResponseCorrelator(max_parked=2)
        for i in range(3):
            correlator.deliver(i, {"id": i})
        assert correlator.parked_count == 2


class TestTimeouts:

    @pytest.mark.asyncio
    async def test_timeout_raises_and_forgets_waiter(self):
        correlator = ResponseCorrelator()
        with pytest.raises(RequestTimeoutError):
            await correlator.wait(9, timeout=0.01)
        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_late_reply_after_timeout_is_dropped(self):
        correlator = ResponseCorrelator()
        with pytest.raises(RequestTimeoutError):
            await correlator.wait(9, timeout=0.01)
        assert correlator.deliver(9, {"id": 9}) is False
        assert correlator.parked_count == 0

    @pytest.mark.asyncio
    async def test_discarded_id_drops_stream_reply(self):
        correlator = ResponseCorrelator()
        correlator.discard(4)
        assert correlator.deliver(4, {"id": 4}) is False

    @pytest.mark.asyncio
    async def test_duplicate_waiter_rejected(self):
        correlator = ResponseCorrelator()
        first = asyncio.create_task(correlator.wait(2, timeout=1.0))
        await asyncio.sleep(0)
        with pytest.raises(ValueError):
            await correlator.wait(2, timeout=1.0)
        correlator.deliver(2, {"id": 2})
        await first


class TestFailAll:

    @pytest.mark.asyncio
    async def test_pending_waiters_fail_with_given_error(self):
        correlator = ResponseCorrelator()
        waiters = [asyncio.create_task(correlator.wait(i, timeout=5.0)) for i in (1, 2)]
        await asyncio.sleep(0)
        assert correlator.fail_all(ConnectionFailedError("stream dropped")) == 2
        for w in waiters:
            with pytest.raises(ConnectionFailedError):
                await w
        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_parked_replies_survive_stream_failure(self):
        correlator = ResponseCorrelator()
        correlator.deliver(1, {"id": 1})
        assert correlator.fail_all() == 0
        assert await correlator.wait(1, timeout=0.1) == {"id": 1}

    def test_clear_drops_parked_replies(self):
        correlator = ResponseCorrelator()
        correlator.deliver(1, {"id": 1})
        correlator.clear()
        assert correlator.parked_count == 0
