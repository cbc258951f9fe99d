"""Error taxonomy for detection, mapping and redaction."""

from __future__ import annotations

from typing import Optional


class DocRedactError(Exception):
    """Base class for all package errors."""


class InputFormatError(DocRedactError, ValueError):
    """The document bytes are empty, lack the PDF header, or cannot be parsed."""


class DetectionError(DocRedactError):
    """A detector failed on one page; the page degrades to fewer entities."""

    def __init__(self, message: str, *, page: Optional[int] = None, detector: str = ""):
        super().__init__(message)
        self.page = page
        self.detector = detector

    def to_dict(self) -> dict:
        return {"page": self.page, "detector": self.detector, "message": str(self)}


class PatternCompileError(DocRedactError, ValueError):
    """A user supplied regular expression does not compile."""

    def __init__(self, pattern: str, reason: str):
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class MappingMiss(DocRedactError):
    """Entity text could not be located among the page fragments."""

    def __init__(self, entity_id: str, text: str, page: int):
        super().__init__(f"No fragment geometry for {text!r} on page {page}")
        self.entity_id = entity_id
        self.text = text
        self.page = page

    def to_dict(self) -> dict:
        return {"entity_id": self.entity_id, "text": self.text, "page": self.page}


class PageOutOfRange(DocRedactError, IndexError):
    """A box references a page the current document does not have."""

    def __init__(self, page: int, page_count: int):
        super().__init__(f"Page {page} is outside 1..{page_count}")
        self.page = page
        self.page_count = page_count


class TierLimitError(DocRedactError):
    """A tier quota (pages or custom patterns) would be exceeded."""


__all__ = [
    "DocRedactError",
    "InputFormatError",
    "DetectionError",
    "PatternCompileError",
    "MappingMiss",
    "PageOutOfRange",
    "TierLimitError",
]
