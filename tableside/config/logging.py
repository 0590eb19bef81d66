"""Logging configuration for the client core."""
import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from tableside.config.settings import Settings, settings as default_settings

# Extra attributes that callers attach with `logger.info(..., extra={...})`
CONTEXT_FIELDS = ("restaurant_id", "table_id", "session_id", "user_id", "channel")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def build_logging_config(config: Settings) -> Dict[str, Any]:
    """Build the dictConfig mapping for the given settings."""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    detailed_format = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"

    console_formatter = "json" if config.LOG_FORMAT.lower() == "json" else "simple"
    handlers = ["console"]

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {
                "format": log_format,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": detailed_format,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": JSONFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "DEBUG" if config.DEBUG else "INFO",
                "formatter": console_formatter,
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "tableside": {
                "level": config.LOG_LEVEL.upper(),
                "handlers": handlers,
                "propagate": False,
            },
            # supabase-py transport noise
            "httpx": {
                "level": "WARNING",
                "handlers": handlers,
                "propagate": False,
            },
            "realtime": {
                "level": "WARNING",
                "handlers": handlers,
                "propagate": False,
            },
        },
    }

    if config.LOG_TO_FILE:
        logs_dir = Path(config.LOG_DIR)
        logs_dir.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "detailed",
            "filename": str(logs_dir / "tableside.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
        }
        logging_config["handlers"]["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": "detailed",
            "filename": str(logs_dir / "error.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
        }
        logging_config["loggers"]["tableside"]["handlers"] = ["console", "file", "error_file"]

    return logging_config


def setup_logging(config: Optional[Settings] = None) -> logging.Logger:
    """Setup logging configuration."""
    config = config or default_settings
    logging.config.dictConfig(build_logging_config(config))

    logger = logging.getLogger("tableside")
    logger.info(f"Logging configured with level: {config.LOG_LEVEL}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)
