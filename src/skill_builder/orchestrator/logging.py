"""JSON logging for the coordinator, the agent threads and the API server.

Every line is one JSON object. The keys that identify a workflow run
(`artifact`, `step_id`, `run_token`, `session_id`) sit at the top level so a
single run can be followed with a plain filter; anything else passed through
`extra=` is nested under `extra`. Records emitted from agent worker threads
carry the thread name, which embeds the artifact, step and token prefix.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import UTC, datetime
from typing import Any, TextIO

RUN_CONTEXT_KEYS: tuple[str, ...] = ("artifact", "step_id", "run_token", "session_id")

# Attributes every LogRecord has; anything else came in through `extra=`.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def _jsonable(value: object) -> object:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)


class JsonFormatter(logging.Formatter):
    """Render a record as a JSON line with run context promoted to the top level."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in RUN_CONTEXT_KEYS:
                payload[key] = _jsonable(value)
            else:
                extra[key] = _jsonable(value)
        if extra:
            payload["extra"] = extra

        if record.threadName and record.threadName != threading.main_thread().name:
            payload["thread"] = record.threadName

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str, *, stream: TextIO | None = None) -> None:
    """Send every logger to one JSON handler at `level`.

    Safe to call more than once; the CLI and the server both call it on start.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # `serve` runs uvicorn with log_config=None, so its loggers propagate here.
    logging.getLogger("uvicorn.access").setLevel(max(root.level, logging.WARNING))
