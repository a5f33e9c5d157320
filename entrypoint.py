"""Run the translation chat server under uvicorn.

Logging is configured here first so that import-time messages from the
application modules land in the configured handlers.
"""
import uvicorn

from constants import HOST, PORT, RELOAD, LOG_LEVEL, LOG_FILE
from logging_config import get_logger, setup_logging

setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def main():
    logger.info(f"Starting translation chat server on {HOST}:{PORT} (reload={RELOAD})")
    # an import string is required for reload to re-import the app
    uvicorn.run("app:app", host=HOST, port=PORT, reload=RELOAD, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
