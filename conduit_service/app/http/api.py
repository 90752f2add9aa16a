from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI

from conduit_service import __version__
from conduit_service.app.http.routers.chat import router as chat_router
from conduit_service.app.http.routers.health import router as health_router
from conduit_service.app.http.routers.servers import router as servers_router
from conduit_service.app.http.routers.sessions import router as sessions_router
from conduit_service.app.http.routers.tools import router as tools_router
from conduit_service.core.factory import ServiceFactory
from conduit_service.core.logging import configure_logging, logger


def create_app(config: Optional[Dict[str, Any]] = None, factory: Optional[ServiceFactory] = None):
    """Create and configure the FastAPI application with DI"""
    factory = factory or ServiceFactory(config)
    configure_logging(factory.config.get("logging", {}).get("level", "INFO"))
    service = factory.get_conversation_service()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await factory.seed_servers()
        # warm the tool cache so the first prompt already lists tools
        service.registry.schedule_refresh(await service.store.enabled_servers())
        yield
        logger.info("Shutting down, closing tool server sessions")
        await service.registry.aclose()

    app = FastAPI(title="Conduit", version=__version__, lifespan=lifespan)
    app.state.conv_svc = service

    v1_router = APIRouter(prefix="/api/v1")
    v1_router.include_router(chat_router)
    v1_router.include_router(health_router)
    v1_router.include_router(sessions_router)
    v1_router.include_router(servers_router)
    v1_router.include_router(tools_router)

    app.include_router(v1_router)
    return app
