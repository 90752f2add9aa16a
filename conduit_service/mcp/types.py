"""
Wire models for the JSON-RPC 2.0 tool-server protocol.

Only the parts of the protocol the client speaks are modelled: the
initialize handshake, tool listing and tool invocation. Servers are free to
send extra fields; they are ignored.
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

PROTOCOL_VERSION = "2024-11-05"


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# --- JSON-RPC envelopes ---


class JSONRPCRequest(_WireModel):
    jsonrpc: str = "2.0"
    id: int
    method: str
    params: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class JSONRPCNotification(_WireModel):
    jsonrpc: str = "2.0"
    method: str
    params: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class JSONRPCErrorObject(_WireModel):
    code: int
    message: str
    data: Any = None


class JSONRPCResponse(_WireModel):
    jsonrpc: str = "2.0"
    id: Optional[Union[int, str]] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[JSONRPCErrorObject] = None


# --- initialize ---


class ClientInfo(_WireModel):
    name: str
    version: str


class ServerInfo(_WireModel):
    name: Optional[str] = None
    version: Optional[str] = None


class ToolsCapability(_WireModel):
    list_changed: Optional[bool] = Field(default=None, alias="listChanged")


class ResourcesCapability(_WireModel):
    subscribe: Optional[bool] = None
    list_changed: Optional[bool] = Field(default=None, alias="listChanged")


class PromptsCapability(_WireModel):
    list_changed: Optional[bool] = Field(default=None, alias="listChanged")


class ServerCapabilities(_WireModel):
    tools: Optional[ToolsCapability] = None
    resources: Optional[ResourcesCapability] = None
    prompts: Optional[PromptsCapability] = None


class InitializeResult(_WireModel):
    protocol_version: str = Field(alias="protocolVersion")
    capabilities: Optional[ServerCapabilities] = None
    server_info: Optional[ServerInfo] = Field(default=None, alias="serverInfo")


# --- tools ---


class ToolPropertyItems(_WireModel):
    type: Optional[str] = None


class ToolProperty(_WireModel):
    type: Optional[Union[str, List[str]]] = None
    description: Optional[str] = None
    enum: Optional[List[Any]] = None
    items: Optional[ToolPropertyItems] = None
    default: Any = None

    @property
    def type_name(self) -> str:
        if isinstance(self.type, list):
            return " | ".join(self.type) or "any"
        return self.type or "any"


class ToolInputSchema(_WireModel):
    type: Optional[str] = None
    properties: Optional[Dict[str, ToolProperty]] = None
    required: Optional[List[str]] = None
    additional_properties: Optional[Union[bool, Dict[str, Any]]] = Field(
        default=None, alias="additionalProperties"
    )


class ToolDescriptor(_WireModel):
    name: str
    description: Optional[str] = None
    input_schema: Optional[ToolInputSchema] = Field(default=None, alias="inputSchema")

    def format_for_prompt(self, display_name: Optional[str] = None) -> str:
        """Render the tool as a prompt section: heading, description, parameters."""
        lines = [f"### {display_name or self.name}"]
        if self.description:
            lines.append(self.description)
        schema = self.input_schema
        if schema and schema.properties:
            required = set(schema.required or [])
            lines.append("Parameters:")
            for pname in sorted(schema.properties):
                prop = schema.properties[pname]
                marker = " (required)" if pname in required else " (optional)"
                line = f"  - {pname}: {prop.type_name}{marker}"
                if prop.description:
                    line += f" - {prop.description}"
                if prop.enum:
                    line += f" [options: {', '.join(str(v) for v in prop.enum)}]"
                lines.append(line)
        return "\n".join(lines)


class ToolsListResult(_WireModel):
    tools: List[ToolDescriptor] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")


class ToolResultContent(_WireModel):
    type: str
    text: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    data: Optional[str] = None


class ToolCallResult(_WireModel):
    content: Optional[List[ToolResultContent]] = None
    is_error: Optional[bool] = Field(default=None, alias="isError")

    @property
    def text_content(self) -> Optional[str]:
        if self.content is None:
            return None
        return "\n".join(c.text for c in self.content if c.type == "text" and c.text is not None)

    @property
    def has_error(self) -> bool:
        return self.is_error is True
