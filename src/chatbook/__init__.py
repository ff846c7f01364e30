"""chatbook - streaming execution engine for conversational documents."""

from .bus import ExecutionBus
from .config import ExecutionConfig, Settings, get_settings
from .document import Document, Entry, EntryKind, Message, Output
from .execution import CancellationToken, ExecutionController, ExecutionHandle, ExecutionState
from .stream import EventStreamDecoder
from .transcript import build_messages
from .transport import CompletionStream, CompletionTransport, HttpxTransport

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "CompletionStream",
    "CompletionTransport",
    "Document",
    "Entry",
    "EntryKind",
    "EventStreamDecoder",
    "ExecutionBus",
    "ExecutionConfig",
    "ExecutionController",
    "ExecutionHandle",
    "ExecutionState",
    "HttpxTransport",
    "Message",
    "Output",
    "Settings",
    "build_messages",
    "get_settings",
]
