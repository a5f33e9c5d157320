"""Error taxonomy for pairing, relay and storage failures.

Every error carries a stable ``code`` that is sent to the client in the
``error`` event, next to a human readable ``message``.
"""

from typing import Any, Dict


class RelayError(Exception):
    """Base exception for all user-facing relay errors."""

    code = "SERVER_ERROR"
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code}


class ValidationError(RelayError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class TokenInvalid(RelayError):
    code = "TOKEN_INVALID"
    default_message = "Invalid or expired QR code."


class RoomNotFound(RelayError):
    code = "ROOM_NOT_FOUND"
    default_message = "Error: You are not in a valid room."


class SenderNotInRoom(RelayError):
    code = "SENDER_NOT_IN_ROOM"
    default_message = "Error: Could not identify sender in room."


class PartnerUnavailable(RelayError):
    code = "PARTNER_UNAVAILABLE"
    default_message = "Error: Partner is not available for translation."


class TranslationFailed(RelayError):
    code = "TRANSLATION_FAILED"
    default_message = "Translation failed"


class StoreUnavailable(RelayError):
    code = "STORE_UNAVAILABLE"
    default_message = "Server error: Cannot process request right now."
