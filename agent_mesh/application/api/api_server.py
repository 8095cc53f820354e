from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import asyncio
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import structlog

from agent_mesh.application.api.route.agent import router as agent_router
from agent_mesh.application.websocket.connection_manager import ConnectionManager
from agent_mesh.application.websocket.ws_server import router as ws_router
from agent_mesh.domain.orchestration.core.main_agent import AgentMesh
from agent_mesh.infrastructure.config.settings import Settings, get_settings
from agent_mesh.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def create_app(
    mesh: AgentMesh,
    settings: Optional[Settings] = None,
    connection_manager: Optional[ConnectionManager] = None,
) -> FastAPI:
    """HTTP and WebSocket surface around one mesh instance"""

    settings = settings or get_settings()
    setup_logging(settings.logging.level, settings.logging.format, settings.logging.service_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await mesh.initialize()
        health_task = asyncio.create_task(app.state.connection_manager.health_check())
        logger.info("Mesh server started")
        try:
            yield
        finally:
            health_task.cancel()
            await app.state.connection_manager.close_all()
            logger.info("Mesh server shutdown")

    app = FastAPI(title="Agent Mesh Server", lifespan=lifespan)
    app.state.mesh = mesh
    app.state.connection_manager = connection_manager or ConnectionManager()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "processing": mesh.is_processing,
            "active_connections": len(app.state.connection_manager.get_active_sessions()),
            "timestamp": datetime.utcnow().isoformat(),
        }

    app.include_router(agent_router)
    app.include_router(ws_router)
    return app


def run(mesh: AgentMesh, host: str = "0.0.0.0", port: int = 8000) -> None:
    import uvicorn

    uvicorn.run(create_app(mesh), host=host, port=port)
