from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router
from relay import SignalingRelay
from schemas.events import ErrorPayload, OutboundEvent, envelope
import uuid
import json
from typing import Optional
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(relay: Optional[SignalingRelay] = None) -> FastAPI:
    """Build the application around a relay (a fresh one unless given)."""
    app = FastAPI(title="turnroom")
    app.state.relay = relay if relay is not None else SignalingRelay()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Signaling endpoint. Frames are JSON objects of the form {"event": ..., "data": ...}."""
        relay: SignalingRelay = websocket.app.state.relay
        connection_id = str(uuid.uuid4())

        await websocket.accept()
        logger.info(f"WebSocket connection accepted: {connection_id}")

        try:
            await relay.connect(connection_id, websocket.send_json)

            message_count = 0
            while True:
                try:
                    data = await websocket.receive_text()
                except WebSocketDisconnect:
                    logger.info(f"WebSocket disconnected normally for connection {connection_id}")
                    break

                message_count += 1
                if data == "ping":
                    await websocket.send_text("pong")
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug(f"Non-JSON frame #{message_count} from connection {connection_id}")
                    await websocket.send_json(envelope(OutboundEvent.ERROR, ErrorPayload(message="Frames must be JSON")))
                    continue

                await relay.handle_message(connection_id, message)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected for connection {connection_id}")
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
        finally:
            # Disconnect and leave-room share the same removal path
            await relay.disconnect(connection_id)
            logger.info(f"Connection {connection_id} cleaned up")

    logger.info("FastAPI application initialized")
    return app


app = create_app()
