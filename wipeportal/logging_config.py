"""
JSON-loggning för Wipe Portal (API, retention-svep och klient/wizard).

Alla poster skrivs som en JSON-rad på stdout via python-json-logger:
  timestamp, level, logger, message, service="wipeportal", environment
samt fält som skickas med extra={...}.

LOG_LEVEL styr nivån (default INFO). apscheduler loggar bara WARNING och
uppåt så att varje körning av retention-jobbet inte syns.
"""

import logging
import logging.config
import os

from pythonjsonlogger.jsonlogger import JsonFormatter  # type: ignore[import-untyped]

SERVICE_NAME = "wipeportal"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Loggers som ska dela JSON-handlern i stället för sina egna format
_APP_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", SERVICE_NAME)


class ServiceJsonFormatter(JsonFormatter):
    def __init__(self, *args, environment: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.environment = environment or os.getenv("ENVIRONMENT", "production")

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record["logger"] = log_record.pop("name", record.name)
        log_record["service"] = SERVICE_NAME
        log_record["environment"] = self.environment


def build_logging_config(level: str = "INFO") -> dict:
    """Bygg dictConfig-strukturen; separat från setup_logging så den kan testas."""
    level = level.upper()
    loggers = {
        name: {"handlers": ["json"], "level": level, "propagate": False}
        for name in _APP_LOGGERS
    }
    loggers["apscheduler"] = {"handlers": ["json"], "level": "WARNING", "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": ServiceJsonFormatter,
                "fmt": LOG_FORMAT,
                "datefmt": "%Y-%m-%dT%H:%M:%S",
                "rename_fields": {"asctime": "timestamp"},
            },
        },
        "handlers": {
            "json": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["json"], "level": level},
        "loggers": loggers,
    }


def setup_logging(level: str | None = None) -> None:
    """Anropas en gång vid start av API:t."""
    logging.config.dictConfig(build_logging_config(level or os.getenv("LOG_LEVEL", "INFO")))
