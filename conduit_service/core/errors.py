"""
Error taxonomy for the tool-server client.

Transport and session failures are raised as typed exceptions; the tool
registry turns them into per-server status and the execution loop turns them
into visible tool results.
"""
from typing import Any, Optional


class MCPClientError(Exception):
    """Base class for every tool-server client failure."""

    message = "MCP client error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class InvalidURLError(MCPClientError):
    message = "Invalid MCP server URL"

    def __init__(self, url: Optional[str] = None):
        self.url = url
        super().__init__(f"Invalid MCP server URL: {url!r}" if url is not None else None)


class HTTPStatusError(MCPClientError):
    def __init__(self, status_code: int, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        if body:
            super().__init__(f"HTTP {status_code}: {body[:500]}")
        else:
            super().__init__(f"HTTP error {status_code}")


class DecodeError(MCPClientError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Failed to decode MCP response: {detail}")


class ConnectionFailedError(MCPClientError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Connection failed: {detail}")


class NotInitializedError(MCPClientError):
    message = "MCP client not initialized. Call initialize() first."


class RequestTimeoutError(MCPClientError):
    message = "MCP request timed out"


class EndpointNotReceivedError(MCPClientError):
    message = "SSE endpoint URL not received from server"


class ServerNotAvailableError(MCPClientError):
    message = "MCP server is not available"


class ToolNotFoundError(MCPClientError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool not found: {name}")


class ProtocolError(MCPClientError):
    """A well-formed JSON-RPC reply carrying an error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.error_message = message
        self.data = data
        super().__init__(f"MCP Error [{code}]: {message}")


class ModelProviderError(Exception):
    """Failure talking to the chat-completion backend."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)

    @classmethod
    def from_status(cls, status: int) -> "ModelProviderError":
        if status == 401:
            msg = "Unauthorized (401). Please verify your API key."
        elif status == 403:
            msg = "Forbidden (403). Your API key may not have access to this model."
        elif status == 404:
            msg = "Endpoint not found (404). Please check the provider base URL."
        elif status == 429:
            msg = "Rate limited (429). Please wait and try again."
        elif 500 <= status <= 599:
            msg = f"Server error ({status}). Please try again later."
        else:
            msg = f"Unexpected server response ({status})."
        return cls(msg, status=status)
