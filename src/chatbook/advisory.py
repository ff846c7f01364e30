"""Document size advisory."""

from __future__ import annotations

from dataclasses import dataclass

from .document import Document


@dataclass(frozen=True)
class ThresholdAdvisory:
    total_length: int
    threshold: int

    @property
    def message(self) -> str:
        return (
            f"This document holds {self.total_length} characters, above the {self.threshold} character "
            "threshold. Consider starting a new document to keep requests small."
        )


def document_length(document: Document) -> int:
    """Count characters across entry texts and their text outputs."""
    total = 0
    for entry in document:
        total += len(entry.text)
        if entry.output is not None and entry.output.is_text:
            total += len(entry.output.content)
    return total


def check_threshold(document: Document, threshold: int) -> ThresholdAdvisory | None:
    total = document_length(document)
    if total > threshold:
        return ThresholdAdvisory(total_length=total, threshold=threshold)
    return None
