"""Conversation history assembly."""

from __future__ import annotations

from .document import Document, Message
from .errors import InvalidIndexError


def build_messages(document: Document, target_index: int) -> list[Message]:
    """Build the ordered message history for executing one entry.

    Every entry up to and including ``target_index`` contributes its text as a
    user turn. Earlier entries with an output replay it as the assistant turn
    that followed. The target's own output is left out because the execution
    is about to replace it.
    """
    if not document.has_index(target_index):
        raise InvalidIndexError(target_index, len(document))

    messages: list[Message] = []
    for index, entry in enumerate(document.entries[: target_index + 1]):
        messages.append(Message("user", entry.text))
        if index != target_index and entry.output is not None:
            messages.append(Message("assistant", entry.output.content))
    return messages
