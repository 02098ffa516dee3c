from __future__ import annotations

"""Application-wide logging configuration.

Every record is rendered as one JSON line with a stable set of keys:
- timestamp (UTC ISO8601), level, logger, service, environment, message
- structured extras passed via ``logger.info(msg, extra={...})`` are merged
  into the object, e.g. ``entity_id`` or ``batch_index``.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from libs.core.settings import get_settings

# Attributes every LogRecord carries; anything else came from ``extra=``.
_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "elastic_transport", "elasticsearch")


class _JsonFormatter(logging.Formatter):
    """One-line JSON log formatter with stable keys and UTC timestamps."""

    def __init__(self, service: str, environment: str) -> None:
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        base: Dict[str, Any] = {
            "timestamp": dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service,
            "environment": self.environment,
            "message": record.getMessage(),
        }
        for k, v in record.__dict__.items():
            if k in _RESERVED or k in base:
                continue
            base[k] = v
        if record.exc_info and record.exc_info[0] is not None:
            base["error"] = {
                "class": record.exc_info[0].__name__,
                "message": str(record.exc_info[1])[:500],
            }
        try:
            return json.dumps(base, ensure_ascii=False)
        except (TypeError, ValueError):
            return json.dumps(base, ensure_ascii=False, default=repr)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logger to output one-line JSON logs."""

    settings = get_settings()
    name = (level or settings.log_level).upper()
    resolved = getattr(logging, name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(
        _JsonFormatter(service=settings.service_name, environment=settings.environment)
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved)

    if resolved > logging.DEBUG:
        for noisy in _QUIET_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)


__all__ = ["setup_logging"]
