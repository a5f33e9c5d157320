from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers.tokens import tokens_router
from backend import RedisBackend, create_redis_client
from connections import ConnectionRegistry, WebSocketChannel
from constants import DEFAULT_LANGUAGE, LOG_LEVEL, LOG_FILE
from exceptions import RelayError, ValidationError
from pairing import PairingService
from presence import PresenceService
from relay import MessageRelay
from translation import OpenAITranslator
from logging_config import get_logger, setup_logging
import uuid
import json
import time

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


async def handle_join(state, connection_id: str, data: dict):
    await state.pairing.redeem_token(data.get("token"), connection_id, data.get("language"))


async def handle_generate_token(state, connection_id: str, data: dict):
    language = data.get("language") or DEFAULT_LANGUAGE
    join_token = await state.pairing.issue_token(language, issuer_connection_id=connection_id)
    await state.registry.send(connection_id, "tokenGenerated", {"token": join_token.token})


async def handle_listen_for_token(state, connection_id: str, data: dict):
    language = data.get("language") or DEFAULT_LANGUAGE
    await state.pairing.bind_issuer(data.get("token"), connection_id, language)


async def handle_send_message(state, connection_id: str, data: dict):
    # older clients send the text as messageText
    text = data.get("text", data.get("messageText"))
    await state.relay.relay_message(data.get("roomId"), connection_id, text)


async def handle_leave_room(state, connection_id: str, data: dict):
    await state.presence.leave_room(connection_id)


async def handle_start_typing(state, connection_id: str, data: dict):
    await state.presence.forward_typing(connection_id, typing=True)


async def handle_stop_typing(state, connection_id: str, data: dict):
    await state.presence.forward_typing(connection_id, typing=False)


async def handle_ping(state, connection_id: str, data: dict):
    await state.registry.send(connection_id, "pong", {})


EVENT_HANDLERS = {
    "join": handle_join,
    "generateToken": handle_generate_token,
    "listenForToken": handle_listen_for_token,
    "sendMessage": handle_send_message,
    "leaveRoom": handle_leave_room,
    "startTyping": handle_start_typing,
    "stopTyping": handle_stop_typing,
    "ping": handle_ping,
}


def parse_frame(raw: str):
    """Decode a client frame into (event, data). Raises ValidationError."""
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Malformed message: expected JSON")
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ValidationError("Malformed message: missing event name")
    data = frame.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationError("Malformed message: data must be an object")
    return frame["event"], data


async def dispatch_event(state, connection_id: str, raw: str):
    """Run one client event. Errors are reported to the originating connection only."""
    event = None
    try:
        event, data = parse_frame(raw)
        handler = EVENT_HANDLERS.get(event)
        if handler is None:
            raise ValidationError(f"Unknown event: {event}")
        logger.debug(f"Handling {event} from connection {connection_id}")
        await handler(state, connection_id, data)
    except RelayError as e:
        logger.info(f"{event or 'frame'} from {connection_id} rejected: {e.code} {e.message}")
        await state.registry.send(connection_id, "error", e.to_dict())
    except Exception as e:
        logger.error(f"Error processing {event} from connection {connection_id}: {e}", exc_info=True)
        await state.registry.send(
            connection_id, "error", {"message": "Server error processing your request.", "code": "SERVER_ERROR"}
        )


def create_app(backend: RedisBackend = None, translator=None) -> FastAPI:
    if backend is None:
        backend = RedisBackend(create_redis_client())
    if translator is None:
        translator = OpenAITranslator()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Translation chat backend starting")
        yield
        logger.info("Translation chat backend shutting down")
        try:
            await backend.close()
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")

    app = FastAPI(lifespan=lifespan)

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # One registry per server instance; room membership lives in Redis
    registry = ConnectionRegistry()
    presence = PresenceService(backend, registry)
    app.state.backend = backend
    app.state.registry = registry
    app.state.presence = presence
    app.state.pairing = PairingService(backend, registry, presence)
    app.state.relay = MessageRelay(backend, registry, translator)
    app.state.started_at = time.monotonic()

    app.include_router(tokens_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Realtime channel. Frames are JSON objects: {"event": ..., "data": {...}}."""
        state = app.state
        connection_id = uuid.uuid4().hex
        await websocket.accept()
        state.registry.register(connection_id, WebSocketChannel(websocket))
        logger.info(f"Connection accepted: {connection_id}")

        try:
            await state.registry.send(connection_id, "server_ack", {"status": "connected", "socketId": connection_id})
            # events from one connection are handled strictly in arrival order
            while True:
                raw = await websocket.receive_text()
                await dispatch_event(state, connection_id, raw)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected normally for connection {connection_id}")
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
        finally:
            state.registry.unregister(connection_id)
            await state.presence.on_disconnect(connection_id)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
