import uuid
from datetime import datetime, timezone

from backend import RedisBackend
from connections import ConnectionRegistry
from constants import MAX_MESSAGE_LENGTH
from exceptions import (
    PartnerUnavailable,
    RoomNotFound,
    SenderNotInRoom,
    TranslationFailed,
    ValidationError,
)
from logging_config import get_logger
from schemas.rooms import Message

logger = get_logger(__name__)


class MessageRelay:
    """Routes one chat message to the partner and echoes it to the sender.

    The translator is any object with an async
    ``translate(text, source_language, target_language) -> str`` that raises
    on failure. Messages are never stored.
    """

    def __init__(self, backend: RedisBackend, registry: ConnectionRegistry, translator):
        self.backend = backend
        self.registry = registry
        self.translator = translator

    async def relay_message(self, room_id: str, sender_connection_id: str, text: str) -> Message:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message text is required")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message is too long (max {MAX_MESSAGE_LENGTH} characters)")
        if not isinstance(room_id, str) or not room_id:
            raise RoomNotFound()

        room = await self.backend.get_room(room_id)
        if room is None:
            logger.warning(f"Room data not found for room {room_id}")
            raise RoomNotFound()

        slot = room.slot_of(sender_connection_id)
        if slot is None:
            logger.warning(f"Sender {sender_connection_id} not found in room {room_id}")
            raise SenderNotInRoom()

        sender = room.participant(slot)
        recipient = room.partner_of(slot)
        if room.pending_participant_a or not recipient.is_present:
            logger.info(f"Recipient missing in room {room_id}, message from {sender_connection_id} not relayed")
            raise PartnerUnavailable()

        translated, failed = await self._translate(text, sender.language, recipient.language)
        message = Message(
            id=uuid.uuid4().hex,
            original=text,
            translated=translated,
            timestamp=datetime.now(timezone.utc).isoformat(),
            translation_failed=failed,
        )

        delivered = await self.registry.send(recipient.connection_id, "newMessage", message.framed_for("partner"))
        if not delivered:
            logger.info(f"Recipient {recipient.connection_id} not connected, message not delivered")
        await self.registry.send(sender_connection_id, "newMessage", message.framed_for("self"))
        logger.debug(f"Relayed message {message.id} in room {room_id} (delivered: {delivered})")
        return message

    async def _translate(self, text: str, source: str, target: str):
        """Return (translated_text, failed). Delivery never depends on translation."""
        if source == target:
            logger.debug("Sender and target languages are the same, skipping translation")
            return text, False
        try:
            return await self.translator.translate(text, source, target), False
        except TranslationFailed as e:
            logger.warning(f"Translation {source}->{target} failed, relaying original text: {e}")
        except Exception as e:
            logger.error(f"Unexpected translation error {source}->{target}: {e}", exc_info=True)
        return text, True
