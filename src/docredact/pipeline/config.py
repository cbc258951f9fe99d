"""Configuration primitives for the redaction pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from docredact.settings import Settings, get_settings


@dataclass
class RunConfig:
    """Runtime configuration for detection and mapping."""

    use_model: bool = True
    use_regex: bool = True
    spacy_model: str = "en_core_web_lg"
    model_default_score: float = 0.85
    min_text_length: int = 2
    min_confidence: float = 0.5
    regex_timeout: Optional[float] = 2.0
    workers: int = 2
    show_progress: bool = True
    instrument: bool = True

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RunConfig":
        s = settings or get_settings()
        return cls(
            use_model=s.use_model,
            spacy_model=s.spacy_model,
            regex_timeout=s.regex_timeout,
            workers=s.workers,
            show_progress=s.show_progress,
        )


class PageResult(BaseModel):
    """Per-page output payload."""

    page_number: int
    text: str
    entities: List[Dict[str, Any]]
    boxes: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    unmapped: List[Dict[str, Any]] = []
    timings: Optional[Dict[str, float]] = None


__all__ = ["RunConfig", "PageResult"]
