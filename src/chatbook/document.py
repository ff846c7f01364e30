"""Conversation document data model."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal, TypeAlias

MARKDOWN_MIME = "text/markdown"
PLAIN_TEXT_MIME = "text/plain"
TEXT_MIMES = frozenset({MARKDOWN_MIME, PLAIN_TEXT_MIME})

Role: TypeAlias = Literal["user", "assistant"]


class EntryKind(StrEnum):
    PROMPT = "prompt"
    RESPONSE = "response"


@dataclass(frozen=True)
class Output:
    """A rendered output blob, replaced wholesale on each update."""

    content: str = ""
    mime: str = MARKDOWN_MIME

    @property
    def is_text(self) -> bool:
        return self.mime in TEXT_MIMES


@dataclass
class Entry:
    """One prompt or response unit of a document.

    ``kind`` belongs to the host, which uses it to render and persist the
    entry. Execution never reads or changes it: every entry is submitted as a
    user turn and only ``output`` is written.
    """

    text: str
    kind: EntryKind = EntryKind.PROMPT
    output: Output | None = None


@dataclass
class Document:
    """Ordered collection of entries forming one conversation.

    Entries are interpreted strictly by position.
    """

    entries: list[Entry] = field(default_factory=list)

    @classmethod
    def from_texts(cls, texts: Iterable[str]) -> Document:
        return cls([Entry(text) for text in texts])

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> Entry:
        return self.entries[index]

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def append(self, entry: Entry) -> Entry:
        self.entries.append(entry)
        return entry

    def has_index(self, index: int) -> bool:
        return 0 <= index < len(self.entries)


@dataclass(frozen=True)
class Message:
    """Role-tagged text unit submitted to the completion service."""

    role: Role
    content: str

    def as_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}
