"""Structured logging configuration."""

import logging
import sys
from pythonjsonlogger import jsonlogger
from crm_assistant.infra.config import config

# Libraries that are chatty at INFO
QUIET_LOGGERS = {
    "sqlalchemy": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openai": logging.WARNING,
    "redis": logging.WARNING,
}


def _level() -> int:
    if config.LOG_LEVEL:
        level = logging.getLevelName(config.LOG_LEVEL)
        return level if isinstance(level, int) else logging.INFO
    return logging.DEBUG if config.DEBUG else logging.INFO


def setup_logging():
    """
    JSON logs on stdout for the `crm_assistant` logger tree.

    Every record carries `service` and `env`; call sites add their own
    fields (tenant_id, conversation_id, agent, tool_name) through `extra`.
    """
    logger = logging.getLogger("crm_assistant")
    logger.setLevel(_level())
    logger.handlers = []
    logger.propagate = False

    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        rename_fields={"levelname": "level", "asctime": "timestamp"},
        static_fields={"service": "crm-assistant", "env": config.APP_ENV},
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    return logger


app_logger = setup_logging()
