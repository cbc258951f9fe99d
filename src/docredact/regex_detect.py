"""Deterministic regex-based PII detectors.

Built-in patterns cover structured identifiers (email, phone, SSN, date,
credit card, IPv4). User patterns are compiled once at insertion time; raw
pattern strings handed straight to :meth:`RegexDetector.detect` are compiled on
the fly and skipped with a reported error when invalid. Uses the third-party
``regex`` package so user patterns can run under a timeout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import regex as re

from .errors import DetectionError, PatternCompileError
from .logging import get_logger
from .types import Entity, EntitySource, EntityType

logger = get_logger(__name__)


EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_RE = re.compile(r"(?<!\d)(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")
SSN_RE = re.compile(r"\b\d{3}[-\s]?\d{2}[-\s]?\d{4}\b")
DATE_RE = re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b")
CREDIT_RE = re.compile(r"\b(?:\d{4}[-\s]?){3}\d{1,4}\b")
IPV4_RE = re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b")

BUILTIN_PATTERNS: Tuple[Tuple[EntityType, "re.Pattern[str]"], ...] = (
    (EntityType.EMAIL, EMAIL_RE),
    (EntityType.PHONE, PHONE_RE),
    (EntityType.SSN, SSN_RE),
    (EntityType.DATE, DATE_RE),
    (EntityType.CREDIT_CARD, CREDIT_RE),
    (EntityType.IP_ADDRESS, IPV4_RE),
)


def compile_pattern(source: str) -> "re.Pattern[str]":
    """Compile a user pattern or raise :class:`PatternCompileError`."""
    if not source:
        raise PatternCompileError(source, "pattern is empty")
    try:
        return re.compile(source)
    except re.error as exc:
        raise PatternCompileError(source, str(exc)) from exc


@dataclass(frozen=True)
class CustomPattern:
    """A user-owned pattern, compiled (and so validated) on construction.

    Invalid sources raise :class:`PatternCompileError`, so an instance that
    exists always holds a usable pattern.
    """

    name: str
    pattern: str
    enabled: bool = True
    type: EntityType = EntityType.CUSTOM
    compiled: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.type is not EntityType.CUSTOM:
            raise ValueError("custom patterns always produce CUSTOM entities")
        object.__setattr__(self, "compiled", compile_pattern(self.pattern))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "pattern": self.pattern,
            "type": self.type.value,
            "enabled": self.enabled,
        }


PatternLike = Union[CustomPattern, str]


class RegexDetector:
    """Match built-in and user patterns against page text.

    Parameters
    ----------
    builtins:
        Whether to run the built-in patterns before the custom ones.
    timeout:
        Per-pattern matching timeout in seconds for custom patterns.
    """

    def __init__(self, *, builtins: bool = True, timeout: Optional[float] = 2.0):
        self.builtins = builtins
        self.timeout = timeout

    def detect(
        self,
        text: str,
        page: int,
        patterns: Optional[Sequence[PatternLike]] = None,
        errors: Optional[List[Exception]] = None,
    ) -> List[Entity]:
        """Return entities in pattern order, then match order."""
        out: List[Entity] = []
        if self.builtins:
            for etype, pat in BUILTIN_PATTERNS:
                out.extend(_matches(pat.finditer(text), etype, page))
        for item in patterns or ():
            compiled = self._resolve(item, errors)
            if compiled is None:
                continue
            try:
                found = list(
                    _matches(
                        compiled.finditer(text, timeout=self.timeout),
                        EntityType.CUSTOM,
                        page,
                    )
                )
            except TimeoutError:
                err = DetectionError(
                    f"custom pattern timed out: {compiled.pattern!r}",
                    page=page,
                    detector="regex",
                )
                logger.warning(str(err), extra={"page": page})
                if errors is not None:
                    errors.append(err)
                continue
            out.extend(found)
        return out

    @staticmethod
    def _resolve(
        item: PatternLike, errors: Optional[List[Exception]]
    ) -> Optional["re.Pattern[str]"]:
        if isinstance(item, CustomPattern):
            return item.compiled if item.enabled else None
        try:
            return compile_pattern(item)
        except PatternCompileError as exc:
            logger.warning(
                "Skipping invalid custom pattern",
                extra={"pattern": exc.pattern, "reason": exc.reason},
            )
            if errors is not None:
                errors.append(exc)
            return None


def _matches(
    matches: Iterable["re.Match[str]"], etype: EntityType, page: int
) -> Iterable[Entity]:
    for m in matches:
        if m.end() <= m.start():
            continue
        yield Entity(
            text=m.group(0),
            type=etype,
            page=page,
            start=m.start(),
            end=m.end(),
            confidence=1.0,
            source=EntitySource.REGEX,
        )


__all__ = [
    "BUILTIN_PATTERNS",
    "CustomPattern",
    "RegexDetector",
    "compile_pattern",
]
