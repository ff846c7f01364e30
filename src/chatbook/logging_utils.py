"""Runtime logging helpers."""

from __future__ import annotations

import os
import sys
from contextvars import ContextVar
from typing import Literal

import loguru
from loguru import logger

LogProfile = Literal["default", "quiet"]

_PROFILE_FORMATS: dict[LogProfile, str] = {
    "quiet": "{level} | {extra[entry]} | {message}",
    "default": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<6} | {name}:{function}:{line} | {extra[entry]} | {message}",
}
_CONFIGURED_PROFILE: LogProfile | None = None
_entry_context: ContextVar[int] = ContextVar("entry")


def current_entry() -> str:
    """Get the index of the entry executing in the current context."""
    index = _entry_context.get(None)
    if index is None:
        return "-"
    return f"entry:{index}"


def bind_entry(index: int) -> None:
    """Mark the current task as executing the given entry."""
    _entry_context.set(index)


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Configure process-level logging once."""

    def inject_context(record: loguru.Record) -> None:
        record["extra"]["entry"] = current_entry()

    global _CONFIGURED_PROFILE
    if profile == _CONFIGURED_PROFILE:
        return

    resolved = (level or os.getenv("CHATBOOK_LOG_LEVEL", "INFO")).upper()
    logger.remove()
    logger.add(
        sys.stderr,
        level=resolved if profile == "default" else "WARNING",
        format=_PROFILE_FORMATS[profile],
        backtrace=False,
        diagnose=False,
    )
    logger.configure(patcher=inject_context)
    _CONFIGURED_PROFILE = profile
