from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from conduit_service.core.errors import MCPClientError, ToolNotFoundError
from conduit_service.core.logging import logger

router = APIRouter(prefix="/tools", tags=["tools"])


class ToolOut(BaseModel):
    name: str
    qualified_name: str
    server: str
    description: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = None


class CallRequest(BaseModel):
    name: str = Field(..., description='Tool name, optionally prefixed "Server.tool".')
    arguments: Dict[str, Any] = Field(default_factory=dict)


@router.get("", response_model=List[ToolOut])
async def list_tools(request: Request):
    conv_svc = request.app.state.conv_svc
    return [
        ToolOut(
            name=t.tool.name,
            qualified_name=t.qualified_name,
            server=t.server_name,
            description=t.tool.description,
            input_schema=t.tool.input_schema.model_dump(by_alias=True, exclude_none=True) if t.tool.input_schema else None,
        )
        for t in await conv_svc.list_tools()
    ]


@router.post("/refresh")
async def refresh_tools(request: Request):
    """Reconnect to every enabled server and wait for the catalog."""
    conv_svc = request.app.state.conv_svc
    await conv_svc.refresh_tools()
    registry = conv_svc.registry
    return {"count": len(registry.tools), "error": registry.last_error}


@router.post("/call")
async def call_tool(body: CallRequest, request: Request):
    conv_svc = request.app.state.conv_svc
    try:
        result = await conv_svc.call_tool(body.name, body.arguments)
    except ToolNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MCPClientError as e:
        logger.warning(f"Tool call {body.name} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return {"name": body.name, "result": result}
