import os

import uvicorn

from logging_config import get_logger, setup_logging

# Logging must be configured before the app module is imported
log_level = os.getenv("LOG_LEVEL", "INFO")
setup_logging(log_level=log_level, log_file=os.getenv("LOG_FILE", None))

from app import app  # noqa: E402
from constants import ROOM_BACKEND, STORAGE_BACKEND  # noqa: E402

logger = get_logger(__name__)


def main():
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    logger.info(
        f"Starting Ephemeral Drop on {host}:{port} "
        f"(rooms: {ROOM_BACKEND}, storage: {STORAGE_BACKEND})"
    )
    uvicorn.run(app, host=host, port=port, log_level=log_level.lower())


if __name__ == "__main__":
    main()
