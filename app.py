from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from constants import CORS_ALLOW_ORIGINS, LOG_FILE, LOG_LEVEL, SOCKET_PATH
from dispatcher import dispatcher
from liveness import LivenessMonitor
from logging_config import get_logger, setup_logging
from registry import connection_registry
from routers.sessions import sessions_router
from sessions import session_table
from transport import WebSocketTransport

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

liveness_monitor = LivenessMonitor(connection_registry, session_table)


@asynccontextmanager
async def lifespan(app: FastAPI):
    liveness_monitor.start()
    try:
        yield
    finally:
        await liveness_monitor.stop()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)

logger.info(f"FastAPI application initialized (relay path: {SOCKET_PATH})")


@app.websocket(SOCKET_PATH)
async def relay_endpoint(websocket: WebSocket):
    """Relay socket: one browser tab, bound to at most one session at a time.

    Every inbound frame counts as a liveness acknowledgement before it is
    dispatched. Whatever the exit path, the connection's binding is torn
    down through the same path the liveness monitor uses.
    """
    await websocket.accept()
    connection = connection_registry.register(WebSocketTransport(websocket))
    client = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
    logger.info(f"Relay connection {connection.id} accepted from {client}")

    message_count = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"Relay connection {connection.id} disconnected (code: {message.get('code')})")
                break

            connection_registry.mark_alive(connection)
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            message_count += 1
            logger.debug(f"Received frame #{message_count} from connection {connection.id}")
            await dispatcher.handle_frame(connection, raw)
    except WebSocketDisconnect:
        logger.info(f"Relay connection {connection.id} disconnected")
    except Exception as e:
        logger.error(f"Error on relay connection {connection.id}: {e}", exc_info=True)
    finally:
        connection_registry.unregister(connection)
        await session_table.detach(connection)
        logger.debug(f"Relay connection {connection.id} cleaned up after {message_count} frames")
