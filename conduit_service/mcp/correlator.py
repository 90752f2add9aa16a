"""
Matches out-of-band JSON-RPC replies to the callers waiting for them.

Each waiter is a single ``asyncio.Future``: whichever of delivery, timeout or
``fail_all`` happens first resolves it, and the waiter is removed when
``wait`` returns. Replies that arrive before anyone waits are parked (one per
id); replies for ids whose waiter already gave up are dropped.
"""
import asyncio
import logging
from collections import OrderedDict
from typing import Any, Dict, Union

from conduit_service.core.errors import ConnectionFailedError, RequestTimeoutError

logger = logging.getLogger(__name__)

RequestId = Union[int, str]


def _key(request_id: RequestId) -> str:
    return str(request_id)


class ResponseCorrelator:
    def __init__(self, max_parked: int = 256, max_expired: int = 1024):
        self._waiters: Dict[str, asyncio.Future] = {}
        self._parked: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._expired: "OrderedDict[str, None]" = OrderedDict()
        self.max_parked = max_parked
        self.max_expired = max_expired

    @property
    def pending_count(self) -> int:
        return len(self._waiters)

    @property
    def parked_count(self) -> int:
        return len(self._parked)

    async def wait(self, request_id: RequestId, timeout: float) -> Dict[str, Any]:
        key = _key(request_id)
        if key in self._parked:
            return self._parked.pop(key)
        if key in self._waiters:
            raise ValueError(f"Already waiting for reply to request {key}")

        fut = asyncio.get_running_loop().create_future()
        self._waiters[key] = fut
        resolved = False
        try:
            result = await asyncio.wait_for(fut, timeout=timeout)
            resolved = True
            return result
        except asyncio.TimeoutError:
            logger.warning(f"Timed out after {timeout}s waiting for reply to request {key}")
            raise RequestTimeoutError(f"MCP request {key} timed out after {timeout}s") from None
        finally:
            self._waiters.pop(key, None)
            if not resolved:
                self._remember_expired(key)

    def deliver(self, request_id: RequestId, payload: Dict[str, Any]) -> bool:
        """Hand a reply to its waiter. Returns False when the reply was dropped."""
        key = _key(request_id)
        fut = self._waiters.get(key)
        if fut is not None:
            if fut.done():
                return False
            fut.set_result(payload)
            return True
        if key in self._expired:
            logger.debug(f"Dropping late reply for request {key}")
            return False
        if key in self._parked:
            logger.debug(f"Dropping duplicate early reply for request {key}")
            return False
        self._parked[key] = payload
        while len(self._parked) > self.max_parked:
            dropped, _ = self._parked.popitem(last=False)
            logger.warning(f"Parked reply buffer full, dropping reply for request {dropped}")
        return True

    def is_parked(self, request_id: RequestId) -> bool:
        return _key(request_id) in self._parked

    def discard(self, request_id: RequestId) -> None:
        """Forget a request answered some other way; a later stream reply is dropped."""
        key = _key(request_id)
        self._parked.pop(key, None)
        self._remember_expired(key)

    def fail_all(self, exc: BaseException | None = None) -> int:
        """Resolve every pending waiter with an error; returns how many were released.

        Parked replies stay claimable: a server may answer and then drop the stream.
        """
        exc = exc or ConnectionFailedError("subscription closed")
        released = 0
        for fut in list(self._waiters.values()):
            if not fut.done():
                fut.set_exception(exc)
                released += 1
        return released

    def clear(self) -> None:
        self._parked.clear()

    def _remember_expired(self, key: str) -> None:
        self._expired[key] = None
        while len(self._expired) > self.max_expired:
            self._expired.popitem(last=False)
