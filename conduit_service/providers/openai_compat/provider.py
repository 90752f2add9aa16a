import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from conduit_service.core.errors import ModelProviderError
from conduit_service.core.interfaces import ModelProvider

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(ModelProvider):
    """
    Chat-completions client for any OpenAI-compatible server (OpenAI, Ollama,
    LM Studio, vLLM, ...). Streams text deltas from `POST {base_url}/chat/completions`.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434/v1",
        api_key: str = "",
        connect_timeout: float = 10.0,
        read_timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not base_url or not base_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid server URL: {base_url!r}")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = httpx.Timeout(connect=connect_timeout, read=read_timeout, write=10.0, pool=10.0)
        self._client = client

    def _headers(self, stream: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers["Accept"] = "text/event-stream" if stream else "application/json"
        if self.api_key.strip():
            headers["Authorization"] = f"Bearer {self.api_key.strip()}"
        return headers

    def _client_or_new(self) -> httpx.AsyncClient:
        return self._client or httpx.AsyncClient(timeout=self.timeout)

    @staticmethod
    def _body(
        model_name: str,
        messages: List[Dict[str, Any]],
        stream: bool,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": model_name, "messages": messages, "stream": stream}
        if temperature is not None:
            body["temperature"] = temperature
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        return body

    async def stream(
        self,
        model_name: str,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncGenerator[str, None]:
        """Yield content deltas until the server sends [DONE] or closes the stream."""
        body = self._body(model_name, messages, True, temperature, max_tokens)
        client = self._client_or_new()
        yielded = 0
        try:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=body,
                headers=self._headers(stream=True),
                timeout=self.timeout,
            ) as resp:
                if not 200 <= resp.status_code < 300:
                    await resp.aread()
                    raise ModelProviderError.from_status(resp.status_code)
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    payload = line[len("data:") :].strip()
                    if payload == "[DONE]":
                        break
                    try:
                        chunk = json.loads(payload)
                        content = chunk["choices"][0]["delta"].get("content")
                    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError) as e:
                        # skip malformed chunks but keep streaming
                        logger.debug(f"Skipping malformed stream chunk ({e}): {payload[:200]!r}")
                        continue
                    if content:
                        yielded += 1
                        yield content
        except httpx.HTTPError as e:
            raise ModelProviderError(f"Network error talking to model server: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()
        logger.debug(f"Model stream ended, yielded {yielded} chunk(s)")

    async def complete(
        self,
        model_name: str,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Non-streaming completion."""
        data = await self._request_json(
            "POST",
            "chat/completions",
            self._body(model_name, messages, False, temperature, max_tokens),
        )
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ModelProviderError("The model returned an empty response.") from e

    async def list_models(self) -> List[str]:
        data = await self._request_json("GET", "models")
        try:
            return sorted(m["id"] for m in data.get("data", []))
        except (KeyError, TypeError, AttributeError) as e:
            raise ModelProviderError("Could not read the server response.") from e

    async def _request_json(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        client = self._client_or_new()
        try:
            resp = await client.request(
                method, f"{self.base_url}/{path}", json=body, headers=self._headers(stream=False), timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise ModelProviderError(f"Network error talking to model server: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()
        if not 200 <= resp.status_code < 300:
            raise ModelProviderError.from_status(resp.status_code)
        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise ModelProviderError("Could not read the server response.") from e
