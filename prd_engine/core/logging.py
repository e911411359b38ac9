import sys
from logging.config import dictConfig

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(levelname)-8s %(asctime)s [%(name)s] %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stderr,
            "level": "INFO",
        },
        # Engine logs go to stdout so they can be separated from library noise
        "engine": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stdout,
            "level": "DEBUG",
        },
    },
    "loggers": {
        "root": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "httpx": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        "openai": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        "prd_engine": {"handlers": ["engine"], "level": "DEBUG", "propagate": False},
        "prd_engine.services": {"handlers": ["engine"], "level": "DEBUG", "propagate": False},
        "prd_engine.context": {"handlers": ["engine"], "level": "DEBUG", "propagate": False},
        "prd_engine.generation_logic": {"handlers": ["engine"], "level": "DEBUG", "propagate": False},
    },
}


def setup_logging(level: str | None = None) -> None:
    """Configures engine-wide logging using dictConfig."""
    config = LOGGING_CONFIG
    if level:
        config = {**LOGGING_CONFIG, "handlers": {**LOGGING_CONFIG["handlers"]}}
        config["handlers"]["engine"] = {**LOGGING_CONFIG["handlers"]["engine"], "level": level.upper()}
    dictConfig(config)
