# coderoom/main.py

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coderoom.api import websocket as websocket_module
from coderoom.api.routes import health, metrics, root, rooms
from coderoom.core.config import Settings, settings as default_settings
from coderoom.core.logging import get_logger, setup_logging
from coderoom.core.state import AppState, build_state

# Configure logging first
setup_logging()
logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, state: Optional[AppState] = None) -> FastAPI:
    """
    Build the FastAPI app around its own AppState.

    Tests pass a prepared ``state`` (for instance with a mocked execution
    gateway); production uses the settings read from the environment.
    """
    settings = settings or (state.settings if state else default_settings)
    state = state or build_state(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 Application starting - bus=%s", settings.PUB_SUB_SERVICE)

        if state.redis_service is not None:
            await state.redis_service.connect()
            state.connection_manager.bus = state.redis_service
            state.background_tasks.append(asyncio.create_task(state.redis_service.listen()))

        state.background_tasks.append(
            asyncio.create_task(
                state.connection_manager.heartbeat(
                    settings.HEARTBEAT_INTERVAL, settings.HEARTBEAT_TIMEOUT
                )
            )
        )

        yield

        for task in state.background_tasks:
            task.cancel()
        await asyncio.gather(*state.background_tasks, return_exceptions=True)
        state.background_tasks.clear()
        await state.service.shutdown()

        if state.redis_service is not None:
            state.connection_manager.bus = None
            await state.redis_service.close()
        logger.info("Application stopped")

    app = FastAPI(title="Code Rooms", lifespan=lifespan)
    app.state.coderoom = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # REST routes
    app.include_router(root.router)
    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(rooms.router)

    # WebSocket routes
    app.include_router(websocket_module.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("coderoom.main:app", host="0.0.0.0", port=8000)
