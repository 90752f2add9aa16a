"""
HTTP transports for talking JSON-RPC to a tool server.

Two shapes share one interface:

* ``DirectTransport`` POSTs every request to the configured endpoint and reads
  the reply from the response. A ``202 Accepted`` defers the reply to the
  server's event stream, which is then awaited through the correlator.
* ``StreamedTransport`` is the legacy SSE shape: a long-lived GET
  subscription announces a message URL in an ``endpoint`` event; requests are
  POSTed there and replies come back as ``message`` events.

Failures are raised as the typed errors from ``conduit_service.core.errors``.
Nothing here retries; that is left to callers.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from conduit_service.core.errors import (
    ConnectionFailedError,
    DecodeError,
    EndpointNotReceivedError,
    HTTPStatusError,
    InvalidURLError,
    MCPClientError,
    NotInitializedError,
    RequestTimeoutError,
)
from conduit_service.core.types import ServerConfig, TransportKind
from conduit_service.mcp.correlator import ResponseCorrelator
from conduit_service.mcp.sse import SSEDecoder, SSEEvent, parse_sse_body, resolve_endpoint_url

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 60.0
SESSION_HEADER = "Mcp-Session-Id"


def decode_message(raw: bytes | str) -> Dict[str, Any]:
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"invalid JSON ({e})") from e
    if not isinstance(msg, dict):
        raise DecodeError(f"expected a JSON object, got {type(msg).__name__}")
    return msg


def _is_reply(msg: Dict[str, Any]) -> bool:
    return "id" in msg and msg.get("id") is not None and ("result" in msg or "error" in msg)


class Transport(ABC):
    """Moves JSON-RPC payloads between this client and one tool server."""

    def __init__(
        self,
        config: ServerConfig,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not config.has_valid_endpoint:
            raise InvalidURLError(config.endpoint)
        self.config = config
        self.endpoint = config.endpoint
        self.call_timeout = call_timeout
        self.connect_timeout = connect_timeout
        self.correlator = ResponseCorrelator()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(call_timeout))
        self._reader: Optional[asyncio.Task] = None
        self._reader_error: Optional[MCPClientError] = None
        self._session_id: Optional[str] = None

    @property
    @abstractmethod
    def request_url(self) -> Optional[str]:
        """Where requests are POSTed; None until known."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send a request and return the matching reply message."""
        ...

    async def notify(self, payload: Dict[str, Any]) -> None:
        """Send a notification; any response body is ignored."""
        url = self._require_request_url()
        await self._post(url, payload)

    async def close(self) -> None:
        await self._stop_reader()
        self.correlator.fail_all(ConnectionFailedError("transport closed"))
        self.correlator.clear()
        if self._owns_client:
            await self.client.aclose()

    # --- shared helpers ---

    def _require_request_url(self) -> str:
        url = self.request_url
        if not url:
            raise NotInitializedError("Transport not connected: no message endpoint yet")
        return url

    def _post_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        headers.update(self.config.build_headers())
        return headers

    def _subscription_headers(self) -> Dict[str, str]:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        headers.update(self.config.build_headers())
        return headers

    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        method = payload.get("method", "?")
        logger.debug(f"POST {url} method={method} id={payload.get('id')}")
        try:
            resp = await self.client.post(
                url,
                content=json.dumps(payload).encode("utf-8"),
                headers=self._post_headers(),
                timeout=self.call_timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"MCP request '{method}' timed out after {self.call_timeout}s") from e
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise InvalidURLError(url) from e
        except httpx.HTTPError as e:
            raise ConnectionFailedError(str(e) or type(e).__name__) from e

        logger.debug(f"Response status={resp.status_code} for method={method}")
        session_id = resp.headers.get(SESSION_HEADER)
        if session_id:
            self._session_id = session_id
        if not 200 <= resp.status_code < 300:
            raise HTTPStatusError(resp.status_code, resp.text)
        return resp

    def _handle_event(self, evt: SSEEvent) -> None:
        """Dispatch one subscription event. Never raises."""
        if evt.event != "message":
            logger.debug(f"Ignoring SSE event type={evt.event!r}")
            return
        try:
            msg = decode_message(evt.data)
        except DecodeError as e:
            logger.warning(f"Dropping malformed SSE message: {e}; data={evt.data[:200]!r}")
            return
        if not _is_reply(msg):
            logger.debug(f"Ignoring server-initiated message method={msg.get('method')!r}")
            return
        if not self.correlator.deliver(msg["id"], msg):
            logger.debug(f"Reply for request {msg['id']} was not claimed")

    async def _read_subscription(self, url: str) -> None:
        """Background task body: keep reading events until the stream ends or fails."""
        error: Optional[MCPClientError] = None
        try:
            async with self.client.stream(
                "GET",
                url,
                headers=self._subscription_headers(),
                timeout=httpx.Timeout(self.connect_timeout, read=None),
            ) as resp:
                logger.info(f"SSE subscription to {url}: status={resp.status_code}")
                if resp.status_code != 200:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise HTTPStatusError(resp.status_code, body or "Failed to connect to SSE endpoint")
                decoder = SSEDecoder()
                async for line in resp.aiter_lines():
                    evt = decoder.feed_line(line)
                    if evt:
                        self._on_event(evt)
                tail = decoder.flush()
                if tail:
                    self._on_event(tail)
        except asyncio.CancelledError:
            error = ConnectionFailedError("subscription cancelled")
            raise
        except MCPClientError as e:
            error = e
        except httpx.TimeoutException as e:
            error = RequestTimeoutError(f"SSE subscription timed out: {e}")
        except httpx.HTTPError as e:
            error = ConnectionFailedError(str(e) or type(e).__name__)
        finally:
            ended_cleanly = error is None
            error = error or ConnectionFailedError("subscription stream ended")
            self._reader_error = error
            released = self.correlator.fail_all(error)
            if released:
                logger.warning(f"SSE subscription closed ({error}); released {released} pending request(s)")
            self._on_reader_exit(error, ended_cleanly)

    def _on_event(self, evt: SSEEvent) -> None:
        self._handle_event(evt)

    def _on_reader_exit(self, error: MCPClientError, ended_cleanly: bool) -> None:
        pass

    def _start_reader(self, url: str) -> None:
        self._reader_error = None
        self._reader = asyncio.create_task(self._read_subscription(url), name=f"sse-reader:{self.config.name}")

    @property
    def subscription_alive(self) -> bool:
        return self._reader is not None and not self._reader.done()

    async def _stop_reader(self) -> None:
        reader, self._reader = self._reader, None
        if reader is None:
            return
        if not reader.done():
            reader.cancel()
        try:
            await reader
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"SSE reader ended with {type(e).__name__}: {e}")


class DirectTransport(Transport):
    """Request/response over HTTP POST to the configured endpoint."""

    @property
    def request_url(self) -> Optional[str]:
        return self.endpoint

    async def connect(self) -> None:
        # nothing to establish up front
        return None

    async def open_subscription(self) -> None:
        """Open the event stream used for replies the server defers with 202."""
        if self.subscription_alive:
            return
        await self._stop_reader()
        self._start_reader(self.endpoint)
        # let the reader issue its GET before the caller continues
        await asyncio.sleep(0)

    async def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request_id = payload["id"]
        resp = await self._post(self.endpoint, payload)

        if resp.status_code == 202 or not resp.content.strip():
            logger.info(f"Reply to request {request_id} deferred to event stream (status={resp.status_code})")
            await self.open_subscription()
            # a reader that already failed would leave this waiter to the timeout
            if not self.subscription_alive and not self.correlator.is_parked(request_id):
                raise self._reader_error or ConnectionFailedError("SSE subscription closed")
            return await self.correlator.wait(request_id, self.call_timeout)

        content_type = resp.headers.get("content-type", "")
        if content_type.startswith("text/event-stream"):
            return self._reply_from_event_body(request_id, resp.text)
        return decode_message(resp.content)

    def _reply_from_event_body(self, request_id: Any, body: str) -> Dict[str, Any]:
        reply: Optional[Dict[str, Any]] = None
        for evt in parse_sse_body(body):
            if evt.event != "message":
                continue
            try:
                msg = decode_message(evt.data)
            except DecodeError as e:
                logger.warning(f"Skipping malformed event in response body: {e}")
                continue
            if reply is None and _is_reply(msg) and str(msg["id"]) == str(request_id):
                reply = msg
            elif _is_reply(msg):
                self.correlator.deliver(msg["id"], msg)
        if reply is None:
            raise DecodeError(f"no reply for request {request_id} in event stream body")
        return reply


class StreamedTransport(Transport):
    """Legacy SSE transport with endpoint discovery."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._message_url: Optional[str] = None
        self._endpoint_waiter: Optional[asyncio.Future] = None

    @property
    def request_url(self) -> Optional[str]:
        return self._message_url

    async def connect(self) -> None:
        if self._message_url and self.subscription_alive:
            return
        await self._stop_reader()
        self._message_url = None
        logger.info(f"Connecting to SSE endpoint {self.endpoint} (timeout {self.connect_timeout:g}s)")
        waiter = asyncio.get_running_loop().create_future()
        self._endpoint_waiter = waiter
        self._start_reader(self.endpoint)
        try:
            self._message_url = await asyncio.wait_for(asyncio.shield(waiter), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            waiter.cancel()
            await self._stop_reader()
            raise EndpointNotReceivedError(
                f"Timeout waiting for endpoint event after {self.connect_timeout:g}s"
            ) from None
        except BaseException:
            waiter.cancel()
            await self._stop_reader()
            raise
        finally:
            self._endpoint_waiter = None
        logger.info(f"SSE connected, message endpoint: {self._message_url}")

    async def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = self._require_request_url()
        if not self.subscription_alive:
            raise self._reader_error or ConnectionFailedError("SSE subscription is not running")
        request_id = payload["id"]
        resp = await self._post(url, payload)
        if resp.content.strip():
            # some servers answer on the POST as well
            try:
                msg = decode_message(resp.content)
            except DecodeError:
                msg = None
            if msg is not None and _is_reply(msg):
                self.correlator.discard(request_id)
                return msg
        if not self.subscription_alive and not self.correlator.is_parked(request_id):
            raise self._reader_error or ConnectionFailedError("SSE subscription closed")
        return await self.correlator.wait(request_id, self.call_timeout)

    def _on_event(self, evt: SSEEvent) -> None:
        if evt.event == "endpoint":
            self._on_endpoint(evt.data)
            return
        self._handle_event(evt)

    def _on_endpoint(self, data: str) -> None:
        waiter = self._endpoint_waiter
        url = resolve_endpoint_url(self.endpoint, data) if data.strip() else ""
        if not url:
            logger.warning(f"Ignoring empty endpoint event from {self.endpoint}")
            return
        if waiter is not None and not waiter.done():
            waiter.set_result(url)
        else:
            # server moved the message endpoint mid-stream
            logger.info(f"SSE message endpoint changed to {url}")
            self._message_url = url

    def _on_reader_exit(self, error: MCPClientError, ended_cleanly: bool) -> None:
        waiter = self._endpoint_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(EndpointNotReceivedError() if ended_cleanly else error)


def create_transport(
    config: ServerConfig,
    call_timeout: float = DEFAULT_CALL_TIMEOUT,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    client: Optional[httpx.AsyncClient] = None,
) -> Transport:
    """Pick the transport implementation for a server configuration."""
    cls = StreamedTransport if config.transport == TransportKind.SSE else DirectTransport
    return cls(config, call_timeout=call_timeout, connect_timeout=connect_timeout, client=client)
