"""JSON logging for the settlement engine.

Every record carries the service name and environment so log shipping can
separate runners; call sites add their own structured fields through
``extra={...}``.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

from settlement.config import AppInfo, get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class SettlementJsonFormatter(jsonlogger.JsonFormatter):
    def __init__(self, *args: Any, service: str, env: str, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._static = {"service": service, "env": env}

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        for key, value in self._static.items():
            log_record.setdefault(key, value)


def setup_logging(level: Optional[str] = None) -> None:
    """Route the root logger to a single JSON stream handler."""

    settings = get_settings()
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel((level or settings.LOG_LEVEL).upper())

    handler = logging.StreamHandler()
    handler.setFormatter(SettlementJsonFormatter(LOG_FORMAT, service=AppInfo().name, env=settings.app_env))
    root_logger.addHandler(handler)
    # Per-request access lines are noise next to the structured settlement logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["SettlementJsonFormatter", "get_logger", "setup_logging"]
