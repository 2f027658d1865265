"""Logging helpers for :mod:`iptvdeck`."""

from __future__ import annotations

import logging
import os
from collections import deque
from pathlib import Path
from typing import Optional, TYPE_CHECKING

import threading
import weakref

if TYPE_CHECKING:  # pragma: no cover - only for typing
    from .log_viewer import LogViewer

__all__ = [
    "configure_logging",
    "detach_stream_handler",
    "get_log_file_path",
    "get_logger",
    "register_log_viewer",
]

_ENV_LEVEL = "IPTVDECK_LOG_LEVEL"
_ENV_FILE = "IPTVDECK_LOG_FILE"
_DEFAULT_LOG_PATH = Path.home() / ".cache" / "iptvdeck.log"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _create_formatter() -> logging.Formatter:
    return logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)


def _coerce_level(value: str) -> int:
    """Return a logging level derived from *value*."""

    normalized = value.strip().upper()
    if normalized.isdigit():
        level = int(normalized)
        if 0 <= level <= logging.CRITICAL:
            return level
    return getattr(logging, normalized, logging.INFO)


def _apply_log_level(logger: logging.Logger, level: int) -> None:
    """Update the logger and all attached handlers to ``level``."""

    logger.setLevel(level)
    for handler in list(logger.handlers):
        handler.setLevel(level)


def _configure_file_logging(
    logger: logging.Logger,
    formatter: logging.Formatter,
    level: int,
    destination: Optional[str],
) -> None:
    """Attach or update a file handler based on ``destination``."""

    existing: Optional[logging.Handler] = getattr(
        configure_logging, "_file_handler", None
    )
    if existing is not None:
        logger.removeHandler(existing)
        existing.close()
        configure_logging._file_handler = None  # type: ignore[attr-defined]

    if not destination:
        configure_logging._log_path = None  # type: ignore[attr-defined]
        return

    log_path = Path(destination).expanduser()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf8")
    except OSError:
        logger.warning("Failed to set up file logging at %s", log_path)
        configure_logging._log_path = None  # type: ignore[attr-defined]
        return

    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)
    logger.addHandler(file_handler)
    configure_logging._file_handler = file_handler  # type: ignore[attr-defined]
    configure_logging._log_path = log_path  # type: ignore[attr-defined]
    logger.debug("File logging enabled at %s", log_path)


class _UILogHandler(logging.Handler):
    """Handler that relays log records to the TUI log viewer."""

    def __init__(self, *, capacity: int = 200) -> None:
        super().__init__()
        self._buffer: deque[str] = deque(maxlen=capacity)
        self._viewer: Optional[weakref.ReferenceType["LogViewer"]] = None
        self._lock = threading.RLock()

    @property
    def buffered(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._buffer)

    def set_viewer(self, viewer: Optional["LogViewer"]) -> None:
        with self._lock:
            self._viewer = weakref.ref(viewer) if viewer else None
            messages = list(self.buffered)
        if viewer is None:
            return
        app = viewer.app
        try:
            app.call_from_thread(viewer.replace_messages, messages)
        except RuntimeError:
            viewer.replace_messages(messages)

    def emit(self, record: logging.LogRecord) -> None:
        message = self.format(record)
        with self._lock:
            self._buffer.append(message)
            viewer_ref = self._viewer
        if viewer_ref is None:
            return
        viewer = viewer_ref()
        if viewer is None:
            return
        try:
            app = viewer.app
            try:
                app.call_from_thread(viewer.append_message, message)
            except RuntimeError:
                # Already on the event loop thread.
                viewer.append_message(message)
        except Exception:  # pragma: no cover - UI may be shutting down
            self.handleError(record)


def configure_logging(
    *,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Configure the package logger if it hasn't been set up yet.

    Later calls only adjust the level and the file destination so modules can
    call :func:`get_logger` freely at import time.
    """

    logger = logging.getLogger("iptvdeck")

    configured = getattr(configure_logging, "_configured", False)
    env_level = os.getenv(_ENV_LEVEL)
    env_file = os.getenv(_ENV_FILE)

    if configured:
        base_level = getattr(configure_logging, "_level", logger.level or logging.INFO)
        if level is not None:
            log_level = _coerce_level(level)
        elif env_level is not None:
            log_level = _coerce_level(env_level)
        else:
            log_level = base_level
    else:
        log_level = _coerce_level(level or env_level or "INFO")

    formatter = _create_formatter()
    if not configured:
        logger.propagate = False

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)
        configure_logging._stream_handler = stream_handler  # type: ignore[attr-defined]

        ui_handler = _UILogHandler()
        ui_handler.setFormatter(formatter)
        logger.addHandler(ui_handler)
        configure_logging._ui_handler = ui_handler  # type: ignore[attr-defined]

        if log_file is not None:
            file_destination: Optional[str] = log_file
        elif env_file is not None:
            file_destination = env_file
        else:
            file_destination = str(_DEFAULT_LOG_PATH)
        _configure_file_logging(logger, formatter, log_level, file_destination)
        configure_logging._configured = True  # type: ignore[attr-defined]
    else:
        if log_file is not None:
            _configure_file_logging(logger, formatter, log_level, log_file)

    _apply_log_level(logger, log_level)
    configure_logging._level = log_level  # type: ignore[attr-defined]
    logger.debug("Logging configured with level %s", logging.getLevelName(log_level))
    return logger


def detach_stream_handler() -> None:
    """Stop echoing records to stderr while the full-screen UI is running."""

    logger = logging.getLogger("iptvdeck")
    handler: Optional[logging.Handler] = getattr(
        configure_logging, "_stream_handler", None
    )
    if handler is None:
        return
    if handler in logger.handlers:
        logger.removeHandler(handler)
    configure_logging._stream_handler = None  # type: ignore[attr-defined]


def get_log_file_path() -> Optional[Path]:
    """Return the active log file path, if file logging is enabled."""

    configure_logging()
    return getattr(configure_logging, "_log_path", None)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module-specific logger."""

    base = configure_logging()
    if not name or name == base.name:
        return base
    if name.startswith(base.name + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{base.name}.{name}")


def register_log_viewer(viewer: Optional["LogViewer"]) -> None:
    """Attach *viewer* to the in-app log handler."""

    logger = configure_logging()
    handler: Optional[_UILogHandler] = getattr(configure_logging, "_ui_handler", None)
    if handler is None:
        logger.warning("UI log handler is not available")
        return
    handler.set_viewer(viewer)
