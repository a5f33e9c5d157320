REDIS_TOKEN_KEY = "qr_token:{token}" # join token - JoinToken json
REDIS_ROOM_PREFIX = "room:"
REDIS_ROOM_KEY = REDIS_ROOM_PREFIX + "{room_id}" # room id - Room json
REDIS_CONN_KEY = "user_socket:{connection_id}" # connection id - room id
REDIS_PENDING_KEY = "pending_room:{token}" # join token - id of the room waiting for its issuer
REDIS_CLAIM_KEY = "pairing_claim:{token}" # join token - held by whoever completes pairing

# **Example `room:{id}` value**
# {
#   "room_id": "room_3f9c...",
#   "token": "a1b2...",
#   "participant_a": {"connection_id": "", "language": "en"},
#   "participant_b": {"connection_id": "9d0e...", "language": "es"},
#   "pending_participant_a": true,
#   "created_at": "2025-11-17T12:34:56+00:00"
# }
