import logging
import logging.config
import sys

from lumepay.core.config import settings


def build_logging_config(level: str | None = None, fmt: str | None = None) -> dict:
    level = (level or settings.LOG_LEVEL).upper()
    fmt = fmt or settings.LOG_FORMAT

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "fmt": (
                    "%(asctime)s "
                    "%(levelname)s "
                    "%(name)s "
                    "%(message)s "
                    "%(module)s "
                    "%(funcName)s "
                    "%(lineno)d"
                ),
                "json_ensure_ascii": False,
            },
            "console": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json" if fmt == "json" else "console",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "lumepay": {
                "handlers": ["default"],
                "level": level,
                "propagate": False,
            },
        },
        "root": {
            "handlers": ["default"],
            "level": level,
        },
    }


def configure_logging(level: str | None = None, fmt: str | None = None) -> logging.Logger:
    """Apply the logging config. Safe to call more than once."""
    logging.config.dictConfig(build_logging_config(level, fmt))
    logger = logging.getLogger("lumepay")
    logger.debug("Logging configured")
    return logger
