"""Textual widget displaying log output within the console."""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterable, Optional, Tuple

from textual.widgets import Static

from .logging_utils import register_log_viewer


class LogViewer(Static):
    """Rolling buffer of formatted log lines fed by the package logger."""

    def __init__(
        self,
        *,
        max_lines: int = 500,
        id: Optional[str] = None,
    ) -> None:
        super().__init__("", id=id, markup=False)
        self._messages: Deque[str] = deque(maxlen=max_lines)
        self._refresh_view()

    def on_mount(self) -> None:  # pragma: no cover - requires UI integration
        register_log_viewer(self)

    def on_unmount(self) -> None:  # pragma: no cover - cleanup on shutdown
        register_log_viewer(None)

    @property
    def lines(self) -> Tuple[str, ...]:
        return tuple(self._messages)

    def clear(self) -> None:
        self._messages.clear()
        self._refresh_view()

    def append_message(self, message: str) -> None:
        self._messages.append(message)
        self._refresh_view()

    def replace_messages(self, messages: Iterable[str]) -> None:
        """Replace the buffer with ``messages``, e.g. records logged before mount."""

        self._messages.clear()
        self._messages.extend(messages)
        self._refresh_view()

    def _refresh_view(self) -> None:
        self.update("\n".join(self._messages) if self._messages else "No log messages yet.")
        if self.is_mounted:
            self.call_after_refresh(self.scroll_end, animate=False)


__all__ = ["LogViewer"]
