"""
Structured JSON logging for Storyloom.

Modules log through ``logging.getLogger(__name__)`` and pass correlation
fields with ``extra=``::

    logger.info("segment stored", extra={"story_id": sid, "segment_id": seg})

The entry point calls :func:`configure_logging` once; records under the
``storyloom`` logger are then emitted as single-line JSON on stderr.
MCP uses stdout for protocol traffic, so nothing is ever logged there.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping

CORRELATION_FIELDS = ("story_id", "item_id", "segment_id", "stage", "metadata")


class JSONFormatter(logging.Formatter):
    """Emits each record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in CORRELATION_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class StoryAdapter(logging.LoggerAdapter):
    """Logger adapter that injects ``story_id`` into every record."""

    def __init__(self, logger: logging.Logger, story_id: str):
        super().__init__(logger, {"story_id": story_id})

    def process(
        self,
        msg: str,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        extra.update(self.extra)
        return msg, kwargs


_CONFIGURED = False


def configure_logging(level: str | int = logging.INFO) -> None:
    """Attach a JSON stderr handler to the ``storyloom`` logger.

    Only the first call has effect.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    root = logging.getLogger("storyloom")
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)
