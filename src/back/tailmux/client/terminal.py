"""Output surfaces the session controller writes to.

A tab renders PTY output into a ``TerminalSink`` and raises user-facing
notices through a ``Notifier``. Both are protocols; ``BufferTerminal``
and ``LoggingNotifier`` are the headless defaults.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class NoticeLevel(str, Enum):
    INFO = 'info'
    SUCCESS = 'success'
    WARNING = 'warning'
    ERROR = 'error'


@dataclass
class Notice:
    """A notice currently on screen. Persistent notices stay until dismissed."""
    message: str
    level: NoticeLevel
    persistent: bool = False


class TerminalSink(Protocol):
    def write(self, data: str) -> None: ...


class Notifier(Protocol):
    def show(self, message: str, level: NoticeLevel, *, persistent: bool = False) -> Notice: ...

    def update(self, notice: Notice, message: str, level: NoticeLevel | None = None) -> None: ...

    def dismiss(self, notice: Notice) -> None: ...


class BufferTerminal:
    """Collects everything written to it."""

    def __init__(self):
        self.chunks: list[str] = []

    def write(self, data: str) -> None:
        self.chunks.append(data)

    @property
    def text(self) -> str:
        return ''.join(self.chunks)

    def clear(self) -> None:
        self.chunks.clear()


_LOG_LEVELS = {
    NoticeLevel.INFO: logging.INFO,
    NoticeLevel.SUCCESS: logging.INFO,
    NoticeLevel.WARNING: logging.WARNING,
    NoticeLevel.ERROR: logging.ERROR,
}


class LoggingNotifier:
    """Logs notices and tracks the ones still showing."""

    def __init__(self):
        self.active: list[Notice] = []
        self.history: list[Notice] = []

    def show(self, message: str, level: NoticeLevel, *, persistent: bool = False) -> Notice:
        notice = Notice(message, level, persistent)
        self.history.append(notice)
        if persistent:
            self.active.append(notice)
        logger.log(_LOG_LEVELS[level], '%s', message)
        return notice

    def update(self, notice: Notice, message: str, level: NoticeLevel | None = None) -> None:
        notice.message = message
        if level is not None:
            notice.level = level
        logger.log(_LOG_LEVELS[notice.level], '%s', message)

    def dismiss(self, notice: Notice) -> None:
        if notice in self.active:
            self.active.remove(notice)
