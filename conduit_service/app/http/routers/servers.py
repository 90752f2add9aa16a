from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, Field

from conduit_service.core.errors import MCPClientError
from conduit_service.core.types import ServerConfig, TransportKind

router = APIRouter(prefix="/servers", tags=["servers"])


class ServerIn(BaseModel):
    id: Optional[str] = Field(None, description="Existing server id to update; omit to create.")
    name: str = "New MCP Server"
    endpoint: str
    transport: TransportKind = TransportKind.HTTP_STREAMABLE
    api_key: str = ""
    custom_headers: Dict[str, str] = Field(default_factory=dict)
    enabled: bool = True


class ServerOut(BaseModel):
    id: str
    name: str
    endpoint: str
    transport: str
    has_api_key: bool
    custom_headers: Dict[str, str]
    enabled: bool


def _out(server: ServerConfig) -> ServerOut:
    # never echo the key back
    data = server.to_dict()
    data["has_api_key"] = bool(data.pop("api_key"))
    return ServerOut(**data)


@router.get("", response_model=List[ServerOut])
async def list_servers(request: Request):
    conv_svc = request.app.state.conv_svc
    return [_out(s) for s in await conv_svc.list_servers()]


@router.post("", response_model=ServerOut)
async def save_server(body: ServerIn, request: Request):
    """Create or update a tool server and schedule a tool refresh."""
    server = ServerConfig.from_dict(body.model_dump(exclude_none=True))
    if not server.has_valid_endpoint:
        raise HTTPException(status_code=422, detail=f"Invalid server URL: {server.endpoint!r}")
    conv_svc = request.app.state.conv_svc
    return _out(await conv_svc.save_server(server))


@router.get("/status")
async def server_status(request: Request):
    conv_svc = request.app.state.conv_svc
    rows = await conv_svc.server_status()
    return [
        {"id": row["server"].id, "name": row["server"].name, **row["status"].as_dict()}
        for row in rows
    ]


@router.delete("/{server_id}", status_code=204)
async def delete_server(server_id: str, request: Request):
    conv_svc = request.app.state.conv_svc
    if not await conv_svc.delete_server(server_id):
        raise HTTPException(status_code=404, detail="Server not found")
    return Response(status_code=204)


@router.post("/{server_id}/test")
async def test_server(server_id: str, request: Request):
    """Handshake with one server and report what it calls itself."""
    conv_svc = request.app.state.conv_svc
    try:
        name, version = await conv_svc.test_server(server_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Server not found")
    except MCPClientError as e:
        return {"ok": False, "error": str(e)}
    return {"ok": True, "server_name": name, "server_version": version}
