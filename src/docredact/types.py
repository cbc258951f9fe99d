"""Core record types shared by detection, mapping and redaction.

Entities and boxes are frozen dataclasses: a box status change inside the
ledger produces a new value, so snapshots handed to the applier never change
underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence
from uuid import uuid4


def _new_id() -> str:
    return uuid4().hex


class EntityType(str, Enum):
    """Closed set of entity categories."""

    PERSON = "PER"
    LOCATION = "LOC"
    ORG = "ORG"
    MISC = "MISC"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    SSN = "SSN"
    DATE = "DATE"
    CREDIT_CARD = "CREDIT_CARD"
    IP_ADDRESS = "IP_ADDRESS"
    CUSTOM = "CUSTOM"


class EntitySource(str, Enum):
    MODEL = "model"
    REGEX = "regex"
    MANUAL = "manual"


class RedactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


ENTITY_LABELS = {
    EntityType.PERSON: "Person",
    EntityType.LOCATION: "Location",
    EntityType.ORG: "Organization",
    EntityType.MISC: "Miscellaneous",
    EntityType.EMAIL: "Email",
    EntityType.PHONE: "Phone",
    EntityType.SSN: "SSN",
    EntityType.DATE: "Date",
    EntityType.CREDIT_CARD: "Credit Card",
    EntityType.IP_ADDRESS: "IP Address",
    EntityType.CUSTOM: "Custom",
}

# Outline colours used by QA previews.
ENTITY_COLORS = {
    EntityType.PERSON: (239, 68, 68),
    EntityType.LOCATION: (34, 197, 94),
    EntityType.ORG: (59, 130, 246),
    EntityType.MISC: (168, 85, 247),
    EntityType.EMAIL: (249, 115, 22),
    EntityType.PHONE: (20, 184, 166),
    EntityType.SSN: (236, 72, 153),
    EntityType.DATE: (99, 102, 241),
    EntityType.CREDIT_CARD: (234, 179, 8),
    EntityType.IP_ADDRESS: (6, 182, 212),
    EntityType.CUSTOM: (107, 114, 128),
}

DEFAULT_ACTIVE_TYPES = frozenset(
    {
        EntityType.PERSON,
        EntityType.LOCATION,
        EntityType.ORG,
        EntityType.EMAIL,
        EntityType.PHONE,
        EntityType.SSN,
    }
)


@dataclass(frozen=True)
class Entity:
    """A detected span of sensitive text.

    Attributes
    ----------
    text:
        Surface text of the span.
    type:
        Semantic category.
    page:
        1-based page number.
    start, end:
        Half-open character offsets into the page's full extracted text.
    confidence:
        Detector confidence in ``[0, 1]``.
    source:
        Which detector produced the entity.
    """

    text: str
    type: EntityType
    page: int
    start: int
    end: int
    confidence: float
    source: EntitySource
    id: str = field(default_factory=_new_id)

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(
                f"entity span must satisfy start < end (got {self.start}, {self.end})"
            )
        if self.page < 1:
            raise ValueError(f"page numbers are 1-based (got {self.page})")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "type": self.type.value,
            "page": self.page,
            "start": self.start,
            "end": self.end,
            "confidence": self.confidence,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class PositionedFragment:
    """One contiguous run of text at a known rectangle (top-left origin)."""

    text: str
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class PageLayout:
    page_number: int
    full_text: str
    fragments: Sequence[PositionedFragment]
    width: float = 0.0
    height: float = 0.0


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def inflate(self, pad: float) -> "Rect":
        return Rect(
            self.x - pad, self.y - pad, self.width + 2 * pad, self.height + 2 * pad
        )

    @staticmethod
    def union(rects: Sequence["Rect"]) -> "Rect":
        if not rects:
            raise ValueError("cannot take the union of zero rectangles")
        x0 = min(r.x for r in rects)
        y0 = min(r.y for r in rects)
        x1 = max(r.right for r in rects)
        y1 = max(r.bottom for r in rects)
        return Rect(x0, y0, x1 - x0, y1 - y0)


@dataclass(frozen=True)
class RedactionBox:
    """A rectangle linked to one entity, subject to confirm/reject review."""

    page: int
    x: float
    y: float
    width: float
    height: float
    entity_id: Optional[str] = None
    status: RedactionStatus = RedactionStatus.PENDING
    id: str = field(default_factory=_new_id)

    @classmethod
    def from_rect(cls, rect: Rect, page: int, entity_id: Optional[str]) -> "RedactionBox":
        return cls(
            page=page,
            x=rect.x,
            y=rect.y,
            width=rect.width,
            height=rect.height,
            entity_id=entity_id,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "page": self.page,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Token:
    """One token emitted by a BIO token classifier."""

    label: str
    score: float
    surface_form: str
    start: int
    end: int


__all__: List[str] = [
    "EntityType",
    "EntitySource",
    "RedactionStatus",
    "ENTITY_LABELS",
    "ENTITY_COLORS",
    "DEFAULT_ACTIVE_TYPES",
    "Entity",
    "PositionedFragment",
    "PageLayout",
    "Rect",
    "RedactionBox",
    "Token",
]
