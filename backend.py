from typing import List, Optional

import redis.asyncio as redis
from pydantic import ValidationError as SchemaError
from redis.exceptions import RedisError

from constants import REDIS_URL, PAIRING_CLAIM_TTL
from exceptions import StoreUnavailable
from logging_config import get_logger
from redis_keys import (
    REDIS_TOKEN_KEY,
    REDIS_ROOM_KEY,
    REDIS_ROOM_PREFIX,
    REDIS_CONN_KEY,
    REDIS_PENDING_KEY,
    REDIS_CLAIM_KEY,
)
from schemas.rooms import JoinToken, Room

logger = get_logger(__name__)


def create_redis_client(url: str = REDIS_URL):
    """Build the asyncio Redis client. Connections are opened lazily."""
    logger.info(f"Creating Redis client for {url.split('@')[-1]}")
    return redis.from_url(url, decode_responses=True, encoding="utf-8")


class RedisBackend:
    """Session store on top of Redis.

    Holds join tokens, rooms, connection -> room lookups and the pending room
    index. Every operation is atomic on a single key only; any Redis failure
    is raised as StoreUnavailable so callers can retry the whole operation.
    """

    def __init__(self, redis_client):
        self.redis_client = redis_client
        logger.info("Initializing RedisBackend")

    async def _run(self, op: str, key: str, awaitable):
        try:
            return await awaitable
        except RedisError as e:
            logger.error(f"Redis {op} {key} failed: {e}")
            raise StoreUnavailable() from e

    # raw key/value contract

    async def put(self, key: str, value: str, ttl: Optional[int] = None):
        logger.debug(f"[Redis SET {key}] ttl={ttl}")
        if ttl:
            await self._run("SET", key, self.redis_client.set(key, value, ex=ttl))
        else:
            await self._run("SET", key, self.redis_client.set(key, value))

    async def put_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """SET NX EX. Returns True when this caller created the key."""
        created = await self._run("SETNX", key, self.redis_client.set(key, value, ex=ttl, nx=True))
        logger.debug(f"[Redis SETNX {key}] created={bool(created)}")
        return bool(created)

    async def get(self, key: str) -> Optional[str]:
        value = await self._run("GET", key, self.redis_client.get(key))
        logger.debug(f"[Redis GET {key}] {'Found' if value is not None else 'Not Found'}")
        return value

    async def delete(self, key: str) -> bool:
        deleted = await self._run("DEL", key, self.redis_client.delete(key))
        logger.debug(f"[Redis DEL {key}] deleted={deleted}")
        return bool(deleted)

    async def keys(self, prefix: str) -> List[str]:
        """All keys starting with prefix. Uses SCAN so Redis is never blocked."""
        pattern = f"{prefix}*"
        try:
            return [key async for key in self.redis_client.scan_iter(match=pattern)]
        except RedisError as e:
            logger.error(f"Redis SCAN {pattern} failed: {e}")
            raise StoreUnavailable() from e

    async def ping(self) -> bool:
        try:
            return bool(await self.redis_client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self):
        logger.info("Closing Redis connection pool")
        await self.redis_client.aclose()

    # join tokens

    async def save_token(self, join_token: JoinToken):
        key = REDIS_TOKEN_KEY.format(token=join_token.token)
        await self.put(key, join_token.model_dump_json(), ttl=join_token.ttl_seconds)

    async def get_token(self, token: str) -> Optional[JoinToken]:
        raw = await self.get(REDIS_TOKEN_KEY.format(token=token))
        if raw is None:
            return None
        try:
            return JoinToken.model_validate_json(raw)
        except SchemaError as e:
            logger.warning(f"Discarding unreadable token record {token}: {e}")
            return None

    async def delete_token(self, token: str) -> bool:
        return await self.delete(REDIS_TOKEN_KEY.format(token=token))

    # rooms

    async def save_room(self, room: Room, ttl: int):
        await self.put(REDIS_ROOM_KEY.format(room_id=room.room_id), room.model_dump_json(), ttl=ttl)

    async def get_room(self, room_id: str) -> Optional[Room]:
        raw = await self.get(REDIS_ROOM_KEY.format(room_id=room_id))
        if raw is None:
            return None
        try:
            return Room.model_validate_json(raw)
        except SchemaError as e:
            logger.warning(f"Discarding unreadable room record {room_id}: {e}")
            return None

    async def delete_room(self, room_id: str) -> bool:
        logger.info(f"Deleting room {room_id}")
        return await self.delete(REDIS_ROOM_KEY.format(room_id=room_id))

    # connection -> room

    async def set_connection_room(self, connection_id: str, room_id: str, ttl: int):
        await self.put(REDIS_CONN_KEY.format(connection_id=connection_id), room_id, ttl=ttl)

    async def get_connection_room(self, connection_id: str) -> Optional[str]:
        return await self.get(REDIS_CONN_KEY.format(connection_id=connection_id))

    async def delete_connection_room(self, connection_id: str) -> bool:
        return await self.delete(REDIS_CONN_KEY.format(connection_id=connection_id))

    # pending room index and pairing claims

    async def claim_pending_room(self, token: str, room_id: str, ttl: int) -> bool:
        return await self.put_if_absent(REDIS_PENDING_KEY.format(token=token), room_id, ttl)

    async def get_pending_room_id(self, token: str) -> Optional[str]:
        return await self.get(REDIS_PENDING_KEY.format(token=token))

    async def delete_pending_room_id(self, token: str) -> bool:
        return await self.delete(REDIS_PENDING_KEY.format(token=token))

    async def claim_pairing(self, token: str, claimant: str) -> bool:
        return await self.put_if_absent(REDIS_CLAIM_KEY.format(token=token), claimant, PAIRING_CLAIM_TTL)

    async def release_pairing(self, token: str):
        await self.delete(REDIS_CLAIM_KEY.format(token=token))

    async def find_pending_room(self, token: str) -> Optional[Room]:
        """Locate the room still waiting for this token's issuer.

        The pending index answers in O(1); the prefix scan covers rooms whose
        index entry has already expired or was never written.
        """
        room_id = await self.get_pending_room_id(token)
        if room_id:
            room = await self.get_room(room_id)
            if room and room.pending_participant_a and room.token == token:
                return room

        logger.debug(f"Scanning rooms for a pending room with token {token}")
        for key in await self.keys(REDIS_ROOM_PREFIX):
            room = await self.get_room(key[len(REDIS_ROOM_PREFIX):])
            if room and room.pending_participant_a and room.token == token:
                return room
        return None
