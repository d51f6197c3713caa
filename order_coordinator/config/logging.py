"""Logging configuration for the application."""
import logging
import logging.config
import sys
from pathlib import Path
from typing import Any, Dict

from order_coordinator.config.settings import settings


def _file_handler(filename: str, level: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "detailed",
        "filename": str(Path(settings.LOG_DIR) / filename),
        "maxBytes": 10485760,  # 10MB
        "backupCount": 5
    }


def setup_logging() -> logging.Logger:
    """Setup logging configuration."""

    # Define log format
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    detailed_format = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
    console_formatter = "json" if settings.LOG_FORMAT.lower() == "json" else "simple"

    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG" if settings.DEBUG else "INFO",
            "formatter": console_formatter,
            "stream": sys.stdout
        }
    }
    app_handlers = ["console"]
    error_handlers = ["console"]
    access_handlers = ["console"]

    if settings.LOG_TO_FILE:
        Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)
        handlers["file"] = _file_handler("app.log", "DEBUG")
        handlers["error_file"] = _file_handler("error.log", "ERROR")
        handlers["access_file"] = _file_handler("access.log", "INFO")
        app_handlers.append("file")
        error_handlers.append("error_file")
        access_handlers = ["console", "access_file"]

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {
                "format": log_format,
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "detailed": {
                "format": detailed_format,
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "json": {
                "()": "order_coordinator.core.logging.JSONFormatter"
            }
        },
        "handlers": handlers,
        "loggers": {
            # Root logger
            "": {
                "level": settings.LOG_LEVEL.upper(),
                "handlers": app_handlers,
                "propagate": False
            },
            # Application logger
            "order_coordinator": {
                "level": "DEBUG" if settings.DEBUG else settings.LOG_LEVEL.upper(),
                "handlers": app_handlers,
                "propagate": False
            },
            # Order lifecycle: transitions, rider races, reconciliation
            "order_coordinator.services": {
                "level": "DEBUG" if settings.DEBUG else "INFO",
                "handlers": app_handlers,
                "propagate": False
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": access_handlers,
                "propagate": False
            },
            "uvicorn.access": {
                "level": "INFO",
                "handlers": access_handlers,
                "propagate": False
            },
            # Error logger
            "order_coordinator.errors": {
                "level": "ERROR",
                "handlers": error_handlers,
                "propagate": False
            }
        }
    }

    # Apply configuration
    logging.config.dictConfig(logging_config)

    logger = logging.getLogger("order_coordinator")
    logger.info(f"Logging configured with level: {settings.LOG_LEVEL}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)
