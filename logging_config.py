import logging
from logging.config import dictConfig
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-5s [pid:%(process)d] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging once for the process.

    Console output always; a rotating file handler is added when log_file is set.
    """
    level = (log_level or "INFO").upper()

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "plain",
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "plain",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 3,
            "encoding": "utf-8",
        }

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,  # keep uvicorn loggers
            "formatters": {
                "plain": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT},
            },
            "handlers": handlers,
            "root": {"level": level, "handlers": list(handlers)},
        }
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
