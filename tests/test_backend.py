"""Session store on top of the Redis client."""

from __future__ import annotations

import pytest

from exceptions import StoreUnavailable
from schemas.rooms import JoinToken, Participant, Room


def _room(room_id: str, token: str = "tok", pending: bool = False) -> Room:
    return Room(
        room_id=room_id,
        token=token,
        participant_a=Participant(connection_id="" if pending else "A", language="en"),
        participant_b=Participant(connection_id="B", language="es"),
        pending_participant_a=pending,
    )


@pytest.mark.asyncio
async def test_put_get_delete_with_ttl(backend, fake_redis) -> None:
    await backend.put("k", "v", ttl=30)
    assert await backend.get("k") == "v"
    assert fake_redis.ttls["k"] == 30
    assert await backend.delete("k") is True
    assert await backend.get("k") is None
    assert await backend.delete("k") is False


@pytest.mark.asyncio
async def test_put_if_absent_only_first_wins(backend) -> None:
    assert await backend.put_if_absent("claim", "one", ttl=10) is True
    assert await backend.put_if_absent("claim", "two", ttl=10) is False
    assert await backend.get("claim") == "one"


@pytest.mark.asyncio
async def test_keys_by_prefix(backend) -> None:
    await backend.put("room:1", "x")
    await backend.put("room:2", "y")
    await backend.put("qr_token:3", "z")
    assert sorted(await backend.keys("room:")) == ["room:1", "room:2"]


@pytest.mark.asyncio
async def test_token_round_trip(backend, fake_redis) -> None:
    await backend.save_token(JoinToken(token="abc", issuer_language="en", ttl_seconds=600))
    loaded = await backend.get_token("abc")
    assert loaded.issuer_connection_id is None
    assert loaded.issuer_language == "en"
    assert fake_redis.ttls["qr_token:abc"] == 600


@pytest.mark.asyncio
async def test_unreadable_records_are_treated_as_absent(backend, fake_redis) -> None:
    fake_redis.store["qr_token:bad"] = "{not json"
    fake_redis.store["room:bad"] = '{"room_id": "bad"}'
    assert await backend.get_token("bad") is None
    assert await backend.get_room("bad") is None


@pytest.mark.asyncio
async def test_find_pending_room_prefers_index(backend) -> None:
    await backend.save_room(_room("r1", token="tok", pending=True), ttl=60)
    await backend.claim_pending_room("tok", "r1", ttl=60)
    room = await backend.find_pending_room("tok")
    assert room.room_id == "r1"


@pytest.mark.asyncio
async def test_find_pending_room_falls_back_to_scan(backend) -> None:
    await backend.save_room(_room("r1", token="other", pending=True), ttl=60)
    await backend.save_room(_room("r2", token="tok", pending=False), ttl=60)
    await backend.save_room(_room("r3", token="tok", pending=True), ttl=60)
    room = await backend.find_pending_room("tok")
    assert room.room_id == "r3"
    assert await backend.find_pending_room("nope") is None


@pytest.mark.asyncio
async def test_redis_errors_become_store_unavailable(backend, fake_redis) -> None:
    fake_redis.fail = True
    with pytest.raises(StoreUnavailable):
        await backend.get("k")
    with pytest.raises(StoreUnavailable):
        await backend.put("k", "v", ttl=5)
    with pytest.raises(StoreUnavailable):
        await backend.keys("room:")
    assert await backend.ping() is False


@pytest.mark.asyncio
async def test_close(backend, fake_redis) -> None:
    await backend.close()
    assert fake_redis.closed is True
