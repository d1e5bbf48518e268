"""
Structured logging for sungura.

Every record carries the farm, entity kind and component it was logged
under, taken from a context variable set with log_context():

    with log_context(farm_id="farm-1", entity_kind="rabbits", component="sync"):
        logger.info("Reconciled snapshot", count=12)

Console output goes through rich; an optional log file receives one JSON
object per line.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping

import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

ROOT_LOGGER = "sungura"
CONTEXT_FIELDS = ("farm_id", "entity_kind", "component")

# Third-party loggers kept at WARNING unless sungura itself logs at DEBUG
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio")

_RESERVED_KWARGS = ("exc_info", "stack_info", "stacklevel")

_log_scope: ContextVar[Mapping[str, str]] = ContextVar("sungura_log_scope", default={})


def current_scope() -> dict[str, str]:
    """The context fields in effect for the running task."""
    return dict(_log_scope.get())


@contextmanager
def log_context(
    farm_id: str | None = None,
    entity_kind: str | None = None,
    component: str | None = None,
) -> Iterator[None]:
    """Attach farm, entity kind and component to every record logged inside.

    Fields left as None keep the value of any enclosing context.
    """
    given = {"farm_id": farm_id, "entity_kind": entity_kind, "component": component}
    scope = {**_log_scope.get(), **{k: v for k, v in given.items() if v is not None}}
    token = _log_scope.set(scope)
    try:
        yield
    finally:
        _log_scope.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with context fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "scope", {}))
        fields = getattr(record, "fields", None)
        if fields:
            entry["fields"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str).decode("utf-8")


class ContextRichHandler(RichHandler):
    """Rich console handler that tags each line with its farm/kind/component."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        text = super().get_level_text(record)
        scope: Mapping[str, str] = getattr(record, "scope", {})
        if not scope:
            return text

        tag = "/".join(scope[k] for k in ("farm_id", "entity_kind") if k in scope)
        if "component" in scope:
            tag = f"{tag} [{scope['component']}]" if tag else f"[{scope['component']}]"
        return Text.assemble(text, " ", Text(tag, style="cyan"))


class ContextLogger:
    """Wraps a stdlib logger; keyword arguments become structured fields.

        logger.warning("Cache write failed", url=url, error=str(e))
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        passthrough = {k: kwargs.pop(k) for k in _RESERVED_KWARGS if k in kwargs}
        self._logger.log(
            level,
            msg,
            *args,
            extra={"scope": current_scope(), "fields": kwargs},
            **passthrough,
        )

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        kwargs.setdefault("exc_info", True)
        self.log(logging.ERROR, msg, *args, **kwargs)


_console: Console | None = None
_configured = False


def get_console() -> Console:
    """The shared stderr console used for log output."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Configure the ``sungura`` logger tree.

    Args:
        log_level: Threshold for console output (DEBUG, INFO, WARNING, ...).
        log_file: Optional JSON Lines file receiving every DEBUG+ record.
        console_output: Whether to log to the rich console.
    """
    global _configured

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.propagate = False
    root.setLevel(logging.DEBUG if log_file else level)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    if console_output:
        console_handler = ContextRichHandler(
            console=get_console(),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        console_handler.setLevel(level)
        root.addHandler(console_handler)

    quiet_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _configured = True


def get_logger(name: str) -> ContextLogger:
    """A ContextLogger under the ``sungura`` tree, configuring defaults once."""
    if not _configured:
        setup_logging()
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return ContextLogger(logging.getLogger(name))
