"""
Structured ``event key=value`` logging over the standard library.

Every relaychat component logs through a [Logger][relaychat.core.logger.Logger]:
the message is a snake_case event name (``session_started``,
``relays_replaced``) and context travels as keyword arguments. Output is
either human-readable key=value pairs or one JSON object per line.

The [StructuredFormatter][relaychat.core.logger.StructuredFormatter] reads the
``structured_kv`` extra attached by ``Logger`` and is installed on the root
handler by the CLI, so plain ``logging.getLogger()`` records from the models
and utils layers come out in the same shape.

Examples:
    ```python
    logger = Logger("session")
    logger.info("session_started", relays=3, generation=1)
    # info session session_started relays=3 generation=1

    Logger("session", json_output=True).info("session_started", relays=3)
    # {"timestamp": "...", "level": "info", "logger": "session", ...}
    ```
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any, ClassVar


_TRUNCATED = "...<truncated {n} chars>"


def _truncate(value: str, limit: int | None) -> str:
    if limit and len(value) > limit:
        return value[:limit] + _TRUNCATED.format(n=len(value) - limit)
    return value


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Render a mapping as space-separated ``key=value`` pairs.

    Values are truncated to *max_value_length* characters. Empty values and
    values containing whitespace, ``=`` or quotes are wrapped in double
    quotes with backslashes and quotes escaped.

    Returns:
        The rendered pairs preceded by *prefix*, or ``""`` for an empty mapping.
    """
    if not kwargs:
        return ""

    parts = []
    for key, value in kwargs.items():
        text = _truncate(str(value), max_value_length)
        if not text or any(c in text for c in " =\"'"):
            escaped = text.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{key}="{escaped}"')
        else:
            parts.append(f"{key}={text}")
    return prefix + " ".join(parts)


class StructuredFormatter(logging.Formatter):
    """``level logger message key=value...`` formatter for the root handler."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        extra: dict[str, Any] = getattr(record, "structured_kv", {})
        if extra:
            line += format_kv_pairs(extra)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class Logger:
    """Structured logger that carries keyword arguments as event context.

    Mirrors the standard logging API (``debug`` through ``exception``) with
    an added ``**kwargs`` parameter.
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = None,
    ) -> None:
        """Create a logger bound to ``logging.getLogger(name)``.

        Args:
            name: Component name, e.g. ``"session"`` or ``"registry"``.
            json_output: Emit JSON objects instead of key=value pairs.
            max_value_length: Per-value truncation limit (default 1000).
        """
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = (
            self._DEFAULT_MAX_VALUE_LENGTH if max_value_length is None else max_value_length
        )

    @property
    def name(self) -> str:
        return self._logger.name

    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, kwargs: dict[str, Any], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if self._json_output:
            record = {
                "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
                "level": logging.getLevelName(level).lower(),
                "logger": self._logger.name,
                "message": msg,
                **kwargs,
            }
            self._logger.log(level, json.dumps(record, default=str), exc_info=exc_info)
            return

        extra: dict[str, Any] = {}
        if kwargs:
            extra["structured_kv"] = {
                k: _truncate(v, self._max_value_length) if isinstance(v, str) else v
                for k, v in kwargs.items()
            }
        self._logger.log(level, msg, extra=extra, exc_info=exc_info)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log at ERROR level with the active exception's traceback attached."""
        self._log(logging.ERROR, msg, kwargs, exc_info=True)
