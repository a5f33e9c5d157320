"""Join token issuance and redemption.

A token moves ISSUED -> (ISSUER-BOUND) -> REDEEMED, or expires through its
Redis TTL. Redemption may arrive before the issuer listens for its token: the
redeemer then waits in a pending room that ``bind_issuer`` completes later.
Whichever side arrives second completes the pairing. Completion is guarded by
a per-token claim key (SET NX) so it happens exactly once even when both
sides, or a retried redemption, race for it.
"""

import secrets
from typing import Optional

from backend import RedisBackend
from connections import ConnectionRegistry
from constants import (
    SOCKET_TOKEN_TTL,
    HTTP_TOKEN_TTL,
    ROOM_TTL,
    PENDING_ROOM_TTL,
    MAX_LANGUAGE_LENGTH,
)
from exceptions import TokenInvalid, ValidationError
from logging_config import get_logger
from presence import PresenceService
from schemas.rooms import JoinToken, Participant, Room

logger = get_logger(__name__)

MAX_TOKEN_LENGTH = 128
WAITING_MESSAGE = "Waiting for the host to connect..."


def generate_token() -> str:
    return secrets.token_hex(16)


def generate_room_id() -> str:
    return f"room_{secrets.token_hex(8)}"


def validate_language(language) -> str:
    if not isinstance(language, str) or not language.strip():
        raise ValidationError("Language is required")
    language = language.strip()
    if len(language) > MAX_LANGUAGE_LENGTH:
        raise ValidationError("Language code is too long")
    return language


def validate_token(token) -> str:
    if not isinstance(token, str) or not token.strip():
        raise ValidationError("Token is required")
    token = token.strip()
    if len(token) > MAX_TOKEN_LENGTH:
        raise ValidationError("Malformed token")
    return token


class PairingService:
    def __init__(self, backend: RedisBackend, registry: ConnectionRegistry, presence: PresenceService):
        self.backend = backend
        self.registry = registry
        self.presence = presence

    async def issue_token(self, language: str, issuer_connection_id: Optional[str] = None) -> JoinToken:
        """Create a join token.

        Tokens bound to a live connection get the short TTL; tokens issued
        before the issuer has a realtime connection get the long one.
        """
        language = validate_language(language)
        ttl = SOCKET_TOKEN_TTL if issuer_connection_id else HTTP_TOKEN_TTL
        join_token = JoinToken(
            token=generate_token(),
            issuer_connection_id=issuer_connection_id,
            issuer_language=language,
            ttl_seconds=ttl,
        )
        await self.backend.save_token(join_token)
        logger.info(f"Stored token {join_token.token} with TTL {ttl}s (issuer: {issuer_connection_id or 'unbound'})")
        return join_token

    async def bind_issuer(self, token: str, connection_id: str, language: str) -> Optional[Room]:
        """Attach a late-listening issuer to its token.

        Returns the completed room if a redeemer was already waiting, None if
        the issuer now simply listens for a redemption.
        """
        token = validate_token(token)
        language = validate_language(language)

        join_token = await self.backend.get_token(token)
        if join_token is None:
            logger.info(f"Token {token} not found when {connection_id} tried to listen for it")
            raise TokenInvalid("Token not found or expired")
        await self._reject_own_pending_room(token, connection_id)

        # update before scanning so a concurrent redeemer that re-reads the
        # token after writing its pending room always sees this issuer
        join_token.issuer_connection_id = connection_id
        join_token.issuer_language = language
        join_token.ttl_seconds = HTTP_TOKEN_TTL
        await self.backend.save_token(join_token)
        logger.info(f"Updated token {token} to use connection {connection_id} and language {language}")

        pending_room = await self.backend.find_pending_room(token)
        if pending_room is None:
            logger.debug(f"No client is waiting with token {token} yet")
            return None

        if pending_room.participant_b.connection_id == connection_id:
            raise TokenInvalid("You cannot join a code you generated.")
        logger.info(f"Found pending room {pending_room.room_id} for token {token}, completing connection")
        return await self._complete_pending(pending_room.room_id, token, connection_id, language)

    async def redeem_token(self, token: str, connection_id: str, language: str) -> Room:
        token = validate_token(token)
        language = validate_language(language)

        join_token = await self.backend.get_token(token)
        if join_token is None:
            logger.info(f"Token {token} not found or expired")
            raise TokenInvalid()
        if join_token.issuer_connection_id == connection_id:
            raise TokenInvalid("You cannot join a code you generated.")

        existing = await self._pending_room_for(token, connection_id)
        if existing is not None:
            return existing

        issuer_id = join_token.issuer_connection_id
        if self.registry.is_alive(issuer_id):
            return await self._pair_now(token, connection_id, language)

        logger.info(f"Issuer of token {token} is not connected yet, creating pending room for {connection_id}")
        return await self._create_pending(join_token, connection_id, language)

    async def _reject_own_pending_room(self, token: str, connection_id: str):
        room_id = await self.backend.get_pending_room_id(token)
        room = await self.backend.get_room(room_id) if room_id else None
        if room and room.participant_b.connection_id == connection_id:
            raise TokenInvalid("You cannot join a code you generated.")

    async def _pending_room_for(self, token: str, connection_id: str) -> Optional[Room]:
        """Handle a redemption of a token that already has a pending room.

        The same redeemer retrying gets its waitingForHost again; anyone else
        finds the token spent.
        """
        room_id = await self.backend.get_pending_room_id(token)
        if not room_id:
            return None
        room = await self.backend.get_room(room_id)
        if room is None or not room.pending_participant_a:
            return None
        if room.participant_b.connection_id != connection_id:
            logger.info(f"Token {token} already redeemed into pending room {room_id}")
            raise TokenInvalid()
        logger.info(f"Repeated redemption of token {token} by {connection_id}, still waiting")
        await self._send_waiting(connection_id, token, room_id)
        return room

    async def _pair_now(self, token: str, connection_id: str, language: str) -> Room:
        if not await self.backend.claim_pairing(token, connection_id):
            logger.info(f"Token {token} is already being redeemed")
            raise TokenInvalid()

        completed = False
        try:
            # re-read: the issuer may have rebound while we were claiming
            join_token = await self.backend.get_token(token)
            if join_token is None:
                raise TokenInvalid()
            issuer_id = join_token.issuer_connection_id

            await self._leave_previous_room(issuer_id)
            await self._leave_previous_room(connection_id)

            room = Room(
                room_id=generate_room_id(),
                token=token,
                participant_a=Participant(connection_id=issuer_id, language=join_token.issuer_language),
                participant_b=Participant(connection_id=connection_id, language=language),
            )
            logger.info(f"Creating room {room.room_id} for {issuer_id} and {connection_id}")
            await self.backend.save_room(room, ttl=ROOM_TTL)
            await self.backend.set_connection_room(issuer_id, room.room_id, ttl=ROOM_TTL)
            await self.backend.set_connection_room(connection_id, room.room_id, ttl=ROOM_TTL)
            await self.backend.delete_token(token)
            completed = True
        finally:
            if not completed:
                await self.backend.release_pairing(token)

        await self._announce(room)
        return room

    async def _create_pending(self, join_token: JoinToken, connection_id: str, language: str) -> Room:
        token = join_token.token
        room = Room(
            room_id=generate_room_id(),
            token=token,
            participant_a=Participant(language=join_token.issuer_language),
            participant_b=Participant(connection_id=connection_id, language=language),
            pending_participant_a=True,
        )

        if not await self.backend.claim_pending_room(token, room.room_id, PENDING_ROOM_TTL):
            # a concurrent redemption created the pending room first
            existing = await self._pending_room_for(token, connection_id)
            if existing is None:
                raise TokenInvalid()
            return existing

        try:
            await self._leave_previous_room(connection_id)
            await self.backend.save_room(room, ttl=PENDING_ROOM_TTL)
            await self.backend.set_connection_room(connection_id, room.room_id, ttl=PENDING_ROOM_TTL)
        except Exception:
            await self.backend.delete_pending_room_id(token)
            raise
        logger.info(f"Created pending room {room.room_id} for token {token}")

        await self._send_waiting(connection_id, token, room.room_id)

        # An issuer that bound while this room was being written scanned too early
        # to see it. Whoever notices the other second completes the pairing.
        latest = await self.backend.get_token(token)
        if latest and self.registry.is_alive(latest.issuer_connection_id):
            completed = await self._complete_pending(
                room.room_id, token, latest.issuer_connection_id, latest.issuer_language
            )
            if completed is not None:
                return completed
        return room

    async def _complete_pending(
        self, room_id: str, token: str, issuer_id: str, issuer_language: str
    ) -> Optional[Room]:
        """Fill participant A of a pending room. A no-op if already completed."""
        if not await self.backend.claim_pairing(token, issuer_id):
            logger.info(f"Pairing for token {token} already completed by another handler")
            return None

        completed = False
        try:
            room = await self.backend.get_room(room_id)
            if room is None or not room.pending_participant_a:
                logger.info(f"Room {room_id} is no longer pending")
                return None
            if not room.participant_b.is_present:
                logger.info(f"Redeemer of pending room {room_id} already left, discarding it")
                await self.backend.delete_room(room_id)
                await self.backend.delete_pending_room_id(token)
                return None

            await self._leave_previous_room(issuer_id)

            room.participant_a = Participant(connection_id=issuer_id, language=issuer_language)
            room.pending_participant_a = False
            await self.backend.save_room(room, ttl=ROOM_TTL)
            await self.backend.set_connection_room(issuer_id, room_id, ttl=ROOM_TTL)
            await self.backend.set_connection_room(room.participant_b.connection_id, room_id, ttl=ROOM_TTL)
            await self.backend.delete_token(token)
            await self.backend.delete_pending_room_id(token)
            completed = True
        finally:
            if not completed:
                await self.backend.release_pairing(token)

        await self._announce(room)
        return room

    async def _leave_previous_room(self, connection_id: Optional[str]):
        # keeps every connection a member of at most one room
        if not connection_id:
            return
        previous_room_id = await self.backend.get_connection_room(connection_id)
        if previous_room_id:
            logger.info(f"Connection {connection_id} leaves room {previous_room_id} to join a new one")
            await self.presence.leave_room(connection_id)

    async def _send_waiting(self, connection_id: str, token: str, room_id: str):
        await self.registry.send(
            connection_id,
            "waitingForHost",
            {"token": token, "roomId": room_id, "message": WAITING_MESSAGE},
        )

    async def _announce(self, room: Room):
        a, b = room.participant_a, room.participant_b
        await self.registry.send(b.connection_id, "joinedRoom", {"roomId": room.room_id, "partnerLanguage": a.language})
        await self.registry.send(a.connection_id, "joinedRoom", {"roomId": room.room_id, "partnerLanguage": b.language})
        logger.info(f"Successfully paired {a.connection_id} and {b.connection_id} in room {room.room_id}")
