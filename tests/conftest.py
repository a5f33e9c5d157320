"""Shared pytest fixtures.

Provides:
  - fake_redis: in-memory stand-in for redis.asyncio.Redis (SET/GET/DEL/SCAN)
  - backend: RedisBackend wired to fake_redis
  - registry / presence / pairing / relay: services sharing that backend
  - translator: recording translator with switchable failure
  - connect: registers a FakeChannel under a connection id
"""

from __future__ import annotations

import fnmatch
import json
from typing import Any

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from backend import RedisBackend
from connections import ConnectionRegistry
from exceptions import TranslationFailed
from pairing import PairingService
from presence import PresenceService
from relay import MessageRelay


# ---------------------------------------------------------------------------
# Mock Redis client
# ---------------------------------------------------------------------------


class FakeRedis:
    """In-memory mock of the redis.asyncio client subset the backend uses."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        self._check()
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex:
            self.ttls[key] = ex
        else:
            self.ttls.pop(key, None)
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self.store.get(key)

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def scan_iter(self, match: str = "*"):
        self._check()
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True

    def expire_now(self, key: str) -> None:
        """Simulate TTL expiry of a key."""
        self.store.pop(key, None)
        self.ttls.pop(key, None)

    def json(self, key: str) -> Any:
        return json.loads(self.store[key])


# ---------------------------------------------------------------------------
# Channels and translator
# ---------------------------------------------------------------------------


class FakeChannel:
    """Records every event sent to a connection."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict]] = []
        self.is_open = True
        self.broken = False

    async def send(self, event: str, payload: dict) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append((event, payload))

    def events(self, name: str) -> list[dict]:
        return [payload for event, payload in self.sent if event == name]

    @property
    def names(self) -> list[str]:
        return [event for event, _ in self.sent]


class FakeTranslator:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self.fail_with: Exception | None = None

    async def translate(self, text: str, source_language: str, target_language: str) -> str:
        self.calls.append((text, source_language, target_language))
        if self.fail_with is not None:
            raise self.fail_with
        return f"[{target_language}] {text}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def backend(fake_redis: FakeRedis) -> RedisBackend:
    return RedisBackend(fake_redis)


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def translator() -> FakeTranslator:
    return FakeTranslator()


@pytest.fixture
def failing_translator() -> FakeTranslator:
    t = FakeTranslator()
    t.fail_with = TranslationFailed("quota exceeded")
    return t


@pytest.fixture
def presence(backend: RedisBackend, registry: ConnectionRegistry) -> PresenceService:
    return PresenceService(backend, registry)


@pytest.fixture
def pairing(backend: RedisBackend, registry: ConnectionRegistry, presence: PresenceService) -> PairingService:
    return PairingService(backend, registry, presence)


@pytest.fixture
def relay(backend: RedisBackend, registry: ConnectionRegistry, translator: FakeTranslator) -> MessageRelay:
    return MessageRelay(backend, registry, translator)


@pytest.fixture
def connect(registry: ConnectionRegistry):
    """Register a FakeChannel for a connection id and return it."""

    def _connect(connection_id: str) -> FakeChannel:
        channel = FakeChannel()
        registry.register(connection_id, channel)
        return channel

    return _connect


@pytest_asyncio.fixture
async def paired_room(pairing: PairingService, connect):
    """C1 (en) issued and listening, C2 (es) redeemed: a fully paired room."""
    c1 = connect("C1")
    c2 = connect("C2")
    join_token = await pairing.issue_token("en", issuer_connection_id="C1")
    room = await pairing.redeem_token(join_token.token, "C2", "es")
    c1.sent.clear()
    c2.sent.clear()
    return room, c1, c2
