import logging
from logging.config import dictConfig
from typing import Dict, Optional

from .config import Settings, get_settings

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Subsystem loggers that can be tuned apart from the root level.
SUBSYSTEM_LOGGERS: Dict[str, str] = {
    "sync": "retentive_sync.sync_engine",
    "realtime": "retentive_sync.realtime",
    "cache": "retentive_sync.cache",
    "telemetry": "retentive.telemetry",
}

HTTP_TRANSPORT_LOGGERS = ("httpx", "httpcore")


def _logger_levels(settings: Settings) -> Dict[str, Dict[str, str]]:
    overrides = {
        "sync": settings.sync_log_level,
        "realtime": settings.realtime_log_level,
        "cache": settings.cache_log_level,
        "telemetry": settings.telemetry_log_level,
    }
    loggers = {
        SUBSYSTEM_LOGGERS[name]: {"level": level}
        for name, level in overrides.items()
        if level is not None
    }
    # Transport loggers stay at WARNING unless HTTP debugging is on.
    transport_level = "DEBUG" if settings.debug_http else "WARNING"
    for name in HTTP_TRANSPORT_LOGGERS:
        loggers[name] = {"level": transport_level}
    return loggers


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure process logging from the RETENTIVE_LOG_* settings."""
    settings = settings or get_settings()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {
                "handlers": ["default"],
                "level": settings.log_level,
            },
            "loggers": _logger_levels(settings),
        }
    )
    logging.getLogger(__name__).debug("Logging configured at %s", settings.log_level)
