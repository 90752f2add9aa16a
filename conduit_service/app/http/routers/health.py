from fastapi import APIRouter, Request

from conduit_service.core.errors import ModelProviderError

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    return {"ok": True}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Store: can read history for a dummy session.
    Provider: answers a model listing.
    Tools: reports the cached catalog, never blocks on tool servers.
    """
    svc = request.app.state.conv_svc
    try:
        await svc.store.get_history("_readiness")
    except Exception as e:
        return {"ready": False, "store": False, "provider": None, "error": str(e)}

    tools = {"enabled": svc.registry.enabled, "count": len(svc.registry.tools), "loading": svc.registry.is_loading}
    try:
        await svc.list_models()
    except ModelProviderError as e:
        return {"ready": False, "store": True, "provider": False, "tools": tools, "error": str(e)}
    return {"ready": True, "store": True, "provider": True, "tools": tools}
