from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router, health_router
from connections import ConnectionManager
from constants import CORS_ORIGINS, DATABASE_URL, FANOUT_BACKEND
from database import init_db, make_engine, make_session_factory, run_blocking
from fanout import FanoutBridge, RedisFanout, make_fanout
from pipeline import MessagePipeline
from registry import RoomRegistry
from sockets import handle_frame
from stores import MessageStore, RoomStore
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def create_app(database_url: str = DATABASE_URL, fanout: FanoutBridge = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = make_engine(database_url)
        await run_blocking(init_db, engine)
        session_factory = make_session_factory(engine)

        bridge = fanout or make_fanout(FANOUT_BACKEND)
        if isinstance(bridge, RedisFanout):
            await run_blocking(bridge.backend.connect)

        registry = RoomRegistry(RoomStore(session_factory))
        pipeline = MessagePipeline(registry, MessageStore(session_factory), bridge)
        manager = ConnectionManager(registry, pipeline, bridge)
        await bridge.subscribe(manager.deliver)

        app.state.instance_id = bridge.instance_id
        app.state.fanout = bridge
        app.state.registry = registry
        app.state.pipeline = pipeline
        app.state.manager = manager
        logger.info(f"Instance {bridge.instance_id} ready with {bridge.name} fanout")
        try:
            yield
        finally:
            await bridge.close()
            engine.dispose()
            logger.info(f"Instance {bridge.instance_id} shut down")

    app = FastAPI(title="RoomRelay", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)
    app.include_router(health_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Persistent chat socket. Rooms are created and joined with events, not with the URL."""
        manager: ConnectionManager = websocket.app.state.manager
        await websocket.accept()
        connection_id = manager.on_connect(websocket)
        client_host = websocket.client.host if websocket.client else 'unknown'
        logger.info(f"WebSocket connection {connection_id} accepted from {client_host}")

        try:
            while True:
                data = await websocket.receive_text()
                ack = await handle_frame(manager, connection_id, data)
                if ack is not None:
                    await websocket.send_json(ack)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected normally for connection {connection_id}")
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
        finally:
            manager.on_disconnect(connection_id)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
