import time
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request

from exceptions import StoreUnavailable, ValidationError
from logging_config import get_logger
from schemas.rooms import GenerateTokenRequest, GenerateTokenResponse, HealthResponse

logger = get_logger(__name__)

tokens_router = APIRouter(tags=["tokens"])


@tokens_router.post("/generate-qr", response_model=GenerateTokenResponse)
async def generate_qr(body: GenerateTokenRequest, request: Request):
    # { "language": "en" } -> { "token": "9f3c..." }
    # Token is issued before the host opens its WebSocket; the host binds to it with listenForToken.
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Received /generate-qr request from {client_host}, language: {body.language}")

    pairing = request.app.state.pairing
    try:
        join_token = await pairing.issue_token(body.language)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except StoreUnavailable:
        raise HTTPException(status_code=500, detail="Failed to generate QR token")

    return GenerateTokenResponse(token=join_token.token)


@tokens_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    state = request.app.state
    redis_ok = await state.backend.ping()
    return HealthResponse(
        status="ok" if redis_ok else "degraded",
        uptime=round(time.monotonic() - state.started_at, 3),
        timestamp=datetime.now(timezone.utc).isoformat(),
        redis="connected" if redis_ok else "disconnected",
        connections=len(state.registry),
    )


@tokens_router.get("/")
async def root():
    return {"message": "Translation Chat Backend Running"}
