from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from conduit_service.core.logging import logger

router = APIRouter(prefix="/chat", tags=["chat"])


class StreamRequest(BaseModel):
    session_id: str = Field(..., description="The unique identifier for the session.")
    prompt: str = Field(..., min_length=1, description="The user's prompt.")
    model_name: Optional[str] = Field(None, description="Model override; defaults to the configured model.")


@router.post("/stream")
async def stream(request: Request, body: StreamRequest):
    logger.info(f"/chat/stream called: session_id={body.session_id}, model_name={body.model_name}")
    conv_svc = request.app.state.conv_svc

    async def event_generator():
        try:
            async for chunk in conv_svc.stream(
                session_id=body.session_id,
                prompt=body.prompt,
                model_name=body.model_name,
            ):
                if await request.is_disconnected():
                    logger.info(f"Client disconnected: session_id={body.session_id}")
                    break
                yield chunk
        except Exception as e:
            logger.exception(f"Exception in /chat/stream: {e}")
            raise

    return StreamingResponse(event_generator(), media_type="application/x-ndjson")
