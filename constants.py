import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

if REDIS_PASSWORD:
    _DEFAULT_REDIS_URL = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}"
else:
    _DEFAULT_REDIS_URL = f"redis://{REDIS_HOST}:{REDIS_PORT}"

# DATABASE_URL is what most PaaS Redis add-ons inject
REDIS_URL = os.getenv("REDIS_URL") or os.getenv("DATABASE_URL") or _DEFAULT_REDIS_URL

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
TRANSLATION_TIMEOUT = float(os.getenv("TRANSLATION_TIMEOUT", 10))

# Token lifetimes (seconds)
SOCKET_TOKEN_TTL = int(os.getenv("SOCKET_TOKEN_TTL", 60))
HTTP_TOKEN_TTL = int(os.getenv("HTTP_TOKEN_TTL", 600))

# Room lifetimes (seconds), refreshed on every mutation
ROOM_TTL = int(os.getenv("ROOM_TTL", 7200))
PENDING_ROOM_TTL = int(os.getenv("PENDING_ROOM_TTL", 600))

# Completion claims only need to outlive a single pairing attempt
PAIRING_CLAIM_TTL = 30

DEFAULT_LANGUAGE = "en"
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", 1000))
MAX_LANGUAGE_LENGTH = 16

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3001))
RELOAD = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)
