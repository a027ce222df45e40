"""Client log levels, emitted either to the logging tree or to callbacks."""

import logging
import sys
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import event
from sqlalchemy.engine import Engine

from courseplatform.core.errors import ClientValidationError

logger = logging.getLogger("courseplatform")

LOG_LEVELS = ("info", "query", "warn", "error")
EMIT_STDOUT = "stdout"
EMIT_EVENT = "event"

_LOGGING_LEVELS = {
    "info": logging.INFO,
    "query": logging.DEBUG,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class LogEvent:
    message: str
    target: str = "courseplatform"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class QueryEvent:
    query: str
    params: str
    duration_ms: float
    target: str = "courseplatform.query"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def parse_log_definitions(log) -> dict[str, str]:
    """Normalise the ``log`` option into ``{level: emit}``."""
    definitions: dict[str, str] = {}
    for entry in log or []:
        if isinstance(entry, str):
            level, emit = entry.strip().lower(), EMIT_STDOUT
        elif isinstance(entry, dict):
            level = str(entry.get("level", "")).strip().lower()
            emit = str(entry.get("emit", EMIT_STDOUT)).strip().lower()
        else:
            raise ClientValidationError(f"Invalid log definition: {entry!r}")

        if level not in LOG_LEVELS:
            raise ClientValidationError(f"Invalid log level `{level}`. Expected one of {', '.join(LOG_LEVELS)}.")
        if emit not in (EMIT_STDOUT, EMIT_EVENT):
            raise ClientValidationError(f"Invalid log emit `{emit}`. Expected `stdout` or `event`.")
        definitions[level] = emit
    return definitions


def _ensure_stdout_handler() -> None:
    if logger.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("courseplatform:%(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


class LogEmitter:
    def __init__(self, definitions: dict[str, str]) -> None:
        self.definitions = definitions
        self._listeners: dict[str, list[Callable]] = defaultdict(list)
        if EMIT_STDOUT in definitions.values():
            _ensure_stdout_handler()

    def on(self, level: str, callback: Callable) -> None:
        if self.definitions.get(level) != EMIT_EVENT:
            raise ClientValidationError(
                f"Log level `{level}` is not configured with emit `event`; add "
                f"{{'level': '{level}', 'emit': 'event'}} to the `log` option."
            )
        self._listeners[level].append(callback)

    def enabled(self, level: str) -> bool:
        return level in self.definitions

    def emit(self, level: str, payload) -> None:
        emit = self.definitions.get(level)
        if emit is None:
            return
        if emit == EMIT_EVENT:
            for callback in list(self._listeners[level]):
                callback(payload)
            return
        if isinstance(payload, QueryEvent):
            logger.log(
                _LOGGING_LEVELS[level],
                "Query: %s Params: %s Duration: %.2fms",
                payload.query,
                payload.params,
                payload.duration_ms,
            )
        else:
            logger.log(_LOGGING_LEVELS[level], payload.message)

    def attach(self, engine: Engine) -> None:
        """Report executed statements as ``query`` events."""
        if not self.enabled("query"):
            return

        def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            conn.info["courseplatform_query_start"] = time.perf_counter()

        def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            started = conn.info.pop("courseplatform_query_start", time.perf_counter())
            self.emit(
                "query",
                QueryEvent(
                    query=statement,
                    params=repr(parameters),
                    duration_ms=(time.perf_counter() - started) * 1000,
                ),
            )

        event.listen(engine, "before_cursor_execute", before_cursor_execute)
        event.listen(engine, "after_cursor_execute", after_cursor_execute)
