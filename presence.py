from typing import Optional

from backend import RedisBackend
from connections import ConnectionRegistry
from constants import ROOM_TTL
from logging_config import get_logger
from schemas.rooms import Room

logger = get_logger(__name__)


class PresenceService:
    """Disconnect handling, partner notification and room cleanup.

    Teardown policy is retain-with-TTL: when a partner remains, only the
    leaving participant's slot is cleared and the room lives on until its TTL
    runs out or the partner leaves too. There is no reconnect operation, so a
    retained room only ever answers PartnerUnavailable.
    """

    def __init__(self, backend: RedisBackend, registry: ConnectionRegistry):
        self.backend = backend
        self.registry = registry

    async def on_disconnect(self, connection_id: str):
        """Best-effort teardown. Never raises; safe to call more than once."""
        try:
            await self._teardown(connection_id)
        except Exception as e:
            logger.error(f"Error handling disconnect for {connection_id}: {e}", exc_info=True)

    async def leave_room(self, connection_id: str) -> bool:
        """Explicit leave while the connection stays open. True if a room was left."""
        return await self._teardown(connection_id)

    async def _teardown(self, connection_id: str) -> bool:
        room_id = await self.backend.get_connection_room(connection_id)
        if not room_id:
            logger.debug(f"Connection {connection_id} was not found in any active room")
            return False

        room = await self.backend.get_room(room_id)
        slot = room.slot_of(connection_id) if room else None
        if slot is None:
            logger.info(f"Room {room_id} no longer holds {connection_id}, removing stale mapping")
            await self._best_effort(self.backend.delete_connection_room(connection_id), "drop stale mapping")
            return False

        partner = room.partner_of(slot)
        if partner.is_present:
            logger.info(f"Connection {connection_id} left room {room_id}, notifying partner {partner.connection_id}")
            await self._best_effort(
                self.registry.send(partner.connection_id, "partnerLeft", {}),
                f"notify partner {partner.connection_id}",
            )
            room.clear_slot(slot)
            await self._best_effort(self.backend.save_room(room, ttl=ROOM_TTL), f"clear slot in room {room_id}")
            await self._best_effort(self.backend.delete_connection_room(connection_id), "delete mapping")
            await self._collect_if_empty(room_id)
        else:
            logger.info(f"No partner left for {connection_id} in room {room_id}, deleting room")
            await self._delete_room(room)
            await self._best_effort(self.backend.delete_connection_room(connection_id), "delete mapping")
        return True

    async def _collect_if_empty(self, room_id: str):
        # A concurrent leaver may have saved a stale copy that still names us.
        # The connection mappings, not the slots, decide who is still inside.
        room = await self.backend.get_room(room_id)
        if room is None:
            return
        for participant in (room.participant_a, room.participant_b):
            if not participant.is_present:
                continue
            if await self.backend.get_connection_room(participant.connection_id) == room_id:
                return
        logger.info(f"Room {room_id} emptied by concurrent disconnects, deleting it")
        await self._delete_room(room)

    async def _delete_room(self, room: Room):
        await self._best_effort(self.backend.delete_room(room.room_id), f"delete room {room.room_id}")
        if room.pending_participant_a and room.token:
            await self._best_effort(self.backend.delete_pending_room_id(room.token), "delete pending index")

    async def _best_effort(self, awaitable, what: str):
        try:
            return await awaitable
        except Exception as e:
            logger.warning(f"Teardown step failed ({what}): {e}")
            return None

    async def forward_typing(self, connection_id: str, typing: bool) -> bool:
        """Tell the partner that this connection started or stopped typing."""
        partner_id = await self._partner_connection(connection_id)
        if not partner_id:
            return False
        event = "partnerTyping" if typing else "partnerStoppedTyping"
        return await self.registry.send(partner_id, event, {"userId": connection_id})

    async def _partner_connection(self, connection_id: str) -> Optional[str]:
        room_id = await self.backend.get_connection_room(connection_id)
        if not room_id:
            return None
        room = await self.backend.get_room(room_id)
        slot = room.slot_of(connection_id) if room else None
        if slot is None:
            return None
        return room.partner_of(slot).connection_id or None
