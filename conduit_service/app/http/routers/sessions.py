from typing import List
from fastapi import APIRouter, Request, HTTPException, Response
from pydantic import BaseModel, Field

router = APIRouter(prefix="/sessions", tags=["sessions"])


class Session(BaseModel):
    session_id: str = Field(..., description="The unique identifier for the session.")
    created_at: str = Field(..., description="The timestamp when the session was created.")


class Message(BaseModel):
    role: str
    content: str


@router.post("", response_model=Session)
async def create_session(request: Request):
    conv_svc = request.app.state.conv_svc
    return await conv_svc.create_session()


@router.get("", response_model=List[Session])
async def list_sessions(request: Request):
    conv_svc = request.app.state.conv_svc
    return await conv_svc.list_sessions()


@router.get("/{session_id}/messages", response_model=List[Message])
async def get_session_messages(session_id: str, request: Request):
    """Stored user and final assistant messages, oldest first."""
    conv_svc = request.app.state.conv_svc
    if not await conv_svc.session_exists(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return await conv_svc.get_session_messages(session_id)


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, request: Request):
    conv_svc = request.app.state.conv_svc
    if not await conv_svc.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return Response(status_code=204)


@router.delete("", status_code=200)
async def delete_all_sessions(request: Request):
    conv_svc = request.app.state.conv_svc
    count = await conv_svc.delete_all_sessions()
    return {"deleted_count": count}
