"""
Logging setup for the feedback loop engine.
"""

import json
import logging
import sys
import time
from typing import Any, Optional

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONTEXT_FIELDS = ("loop", "cycle", "domain", "action")


class JsonFormatter(logging.Formatter):
    """Outputs log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": int(time.time() * 1000),
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "funcName": record.funcName,
            "lineno": record.lineno,
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for attr in CONTEXT_FIELDS:
            if hasattr(record, attr):
                payload[attr] = getattr(record, attr)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(
    level: str = "INFO", fmt: str = "text", stream: Optional[Any] = None
) -> None:
    """Configure the root logger with JSON or plain text output."""
    handler = logging.StreamHandler(stream or sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


class LoopLogAdapter(logging.LoggerAdapter):
    """Attaches the loop name (and domain) to every record."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra", {}))
        kwargs["extra"] = extra
        return msg, kwargs


def get_loop_logger(loop_name: str, domain: Optional[str] = None) -> LoopLogAdapter:
    logger = logging.getLogger(f"feedback.loop.{loop_name}")
    return LoopLogAdapter(logger, {"loop": loop_name, "domain": domain or loop_name})
