"""
Character Engine Service - FastAPI Application.

HTTP control plane for loading and unloading characters, and the WebSocket
endpoint carrying the conversation.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..config import Settings, get_settings
from ..core.errors import SessionError, SessionExistsError, SessionNotFoundError
from ..orchestrator.app import CharacterEngineApp
from ..sessions.models import AgentProfile
from ..streaming.transport import WebSocketTransport

logger = structlog.get_logger(__name__)


# WebSocket close codes
WS_SESSION_NOT_FOUND = 4404
WS_SESSION_CONNECTED = 4409


class LoadRequest(BaseModel):
    """Body of POST /load."""

    model_config = ConfigDict(populate_by_name=True)

    agent: AgentProfile
    user_name: str = Field(default="User", alias="userName")


class LoadResponse(BaseModel):
    agent: AgentProfile


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[CharacterEngineApp] = None,
) -> FastAPI:
    """Create the FastAPI application around a CharacterEngineApp."""
    settings = settings or (engine.settings if engine is not None else get_settings())
    engine = engine if engine is not None else CharacterEngineApp(settings)
    start_time = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("character_engine_starting", port=settings.port)
        await engine.initialize()
        yield
        logger.info("character_engine_stopping")
        await engine.shutdown()

    app = FastAPI(
        title="Character Engine",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # HTTP
    # =========================================================================

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "healthy" if engine.initialized else "starting",
            "version": __version__,
            "uptime_seconds": round(time.time() - start_time, 1),
            "active_sessions": len(engine.registry),
        }

    @app.post("/load", response_model=LoadResponse)
    async def load(request: LoadRequest, key: str = Query(..., min_length=1)) -> LoadResponse:
        try:
            agent = await engine.load(key, request.agent, request.user_name)
        except SessionExistsError as e:
            raise HTTPException(status_code=409, detail=e.to_dict())
        return LoadResponse(agent=agent)

    @app.post("/unload")
    async def unload(key: str = Query(..., min_length=1)) -> Dict[str, str]:
        await engine.unload(key)
        return {"message": "Session unloaded"}

    # =========================================================================
    # WebSocket
    # =========================================================================

    @app.websocket("/session")
    async def session(websocket: WebSocket, key: str = Query(...)):
        await websocket.accept()
        log = logger.bind(key=key)

        transport = WebSocketTransport(websocket)
        try:
            orchestrator = await engine.connect(key, transport)
        except SessionNotFoundError as e:
            log.warning("connection_rejected", reason=e.code)
            await websocket.close(code=WS_SESSION_NOT_FOUND, reason=e.message)
            return
        except SessionError as e:
            log.warning("connection_rejected", reason=e.code)
            await websocket.close(code=WS_SESSION_CONNECTED, reason=e.message)
            return

        log.info("connection_opened")
        messages: asyncio.Queue = asyncio.Queue()

        # Messages are handled in order while the socket keeps being read,
        # so a disconnect can abandon the interaction in flight.
        async def message_worker():
            while not orchestrator.closed:
                await orchestrator.handle_message(await messages.get())

        worker = asyncio.create_task(message_worker())

        try:
            while not worker.done():
                receiving = asyncio.ensure_future(websocket.receive_text())
                await asyncio.wait({receiving, worker}, return_when=asyncio.FIRST_COMPLETED)
                if not receiving.done():
                    receiving.cancel()
                    break
                messages.put_nowait(receiving.result())
        except WebSocketDisconnect:
            log.info("client_disconnected")
        finally:
            await orchestrator.close(flush=False)
            worker.cancel()
            if transport.is_open:
                await websocket.close()
            try:
                await worker
            except asyncio.CancelledError:
                pass

    return app
