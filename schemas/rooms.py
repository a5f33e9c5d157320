from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Participant(BaseModel):
    # empty connection_id means the slot is vacant (not yet bound, or left)
    connection_id: str = ""
    language: str

    @property
    def is_present(self) -> bool:
        return bool(self.connection_id)


class JoinToken(BaseModel):
    token: str
    issuer_connection_id: Optional[str] = None
    issuer_language: str
    created_at: datetime = Field(default_factory=utcnow)
    ttl_seconds: int


class Room(BaseModel):
    room_id: str
    token: Optional[str] = None
    participant_a: Participant
    participant_b: Participant
    pending_participant_a: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    def slot_of(self, connection_id: str) -> Optional[str]:
        """Return "a" or "b" for the slot holding connection_id, None if absent."""
        if not connection_id:
            return None
        if self.participant_a.connection_id == connection_id:
            return "a"
        if self.participant_b.connection_id == connection_id:
            return "b"
        return None

    def participant(self, slot: str) -> Participant:
        return self.participant_a if slot == "a" else self.participant_b

    def partner_of(self, slot: str) -> Participant:
        return self.participant_b if slot == "a" else self.participant_a

    def clear_slot(self, slot: str):
        self.participant(slot).connection_id = ""

    @property
    def is_paired(self) -> bool:
        return (
            not self.pending_participant_a
            and self.participant_a.is_present
            and self.participant_b.is_present
        )


class Message(BaseModel):
    id: str
    original: str
    translated: str
    timestamp: str
    translation_failed: bool = False

    def framed_for(self, sender_role: str) -> dict:
        """Wire payload for newMessage with sender relative to the recipient."""
        return {
            "id": self.id,
            "original": self.original,
            "translated": self.translated,
            "sender": sender_role,
            "timestamp": self.timestamp,
            "translationFailed": self.translation_failed,
        }


class GenerateTokenRequest(BaseModel):
    language: str


class GenerateTokenResponse(BaseModel):
    token: str


class HealthResponse(BaseModel):
    status: str
    uptime: float
    timestamp: str
    redis: str
    connections: int
