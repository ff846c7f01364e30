"""Application-level exception types for chatbook."""

from __future__ import annotations


class ChatbookError(Exception):
    """Base exception for chatbook."""


class InvalidIndexError(ChatbookError, IndexError):
    """Raised when an entry index falls outside the document."""

    def __init__(self, index: int, size: int) -> None:
        super().__init__(f"entry index {index} out of range for document of {size} entries")
        self.index = index
        self.size = size


class ConfigurationError(ChatbookError):
    """Base exception for configuration and startup validation errors."""


class MissingCredentialsError(ConfigurationError):
    """Raised when an execution is requested without an API key."""


class SessionAlreadyRunningError(ChatbookError):
    """Raised when an entry already has a running execution session."""

    def __init__(self, index: int) -> None:
        super().__init__(f"entry {index} already has a running execution")
        self.index = index


class ExecutionError(ChatbookError):
    """Base exception for faults raised while a session is streaming."""


class TransportError(ExecutionError):
    """Raised when the completion connection fails or is lost."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecodeError(ExecutionError):
    """Raised when a streamed event payload is malformed."""


class CancellationError(ExecutionError):
    """Raised when an in-flight read is terminated by an explicit cancel."""
