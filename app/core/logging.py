"""
Logging configuration.

- console: human-readable lines for local development
- json: one JSON object per line for log aggregation
"""
import json
import logging
import logging.config
from datetime import datetime, timezone


class JsonFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def get_logging_config(level: str = "INFO", log_format: str = "console") -> dict:
    """Build a dictConfig for the application loggers."""
    if log_format == "json":
        formatter = {"()": "app.core.logging.JsonFormatter"}
    else:
        formatter = {
            "format": "[{asctime}] {levelname} {name} {message}",
            "style": "{",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "app": {
                "handlers": ["console"],
                "level": level.upper(),
                "propagate": False,
            },
        },
        "root": {"handlers": ["console"], "level": "WARNING"},
    }


def configure_logging(level: str = "INFO", log_format: str = "console") -> None:
    logging.config.dictConfig(get_logging_config(level, log_format))
