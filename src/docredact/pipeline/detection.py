"""Per-page detection: model and regex detectors merged into one stream."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from docredact.errors import DetectionError
from docredact.logging import get_logger
from docredact.merge import merge_entities
from docredact.model_detect import ModelDetector
from docredact.regex_detect import PatternLike, RegexDetector
from docredact.types import Entity, PageLayout

from .config import RunConfig

logger = get_logger(__name__)


@dataclass
class PageDetection:
    page: int
    entities: List[Entity]
    errors: List[Exception] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)


def detect_page(
    layout: PageLayout,
    cfg: RunConfig,
    model_detector: Optional[ModelDetector] = None,
    patterns: Sequence[PatternLike] = (),
) -> PageDetection:
    """Run the configured detectors on one page and merge their output.

    Detector failures are recorded on the result and never raised: the page
    simply ends up with fewer entities.
    """
    text, page = layout.full_text, layout.page_number
    errors: List[Exception] = []

    t0 = time.perf_counter()
    model_entities: List[Entity] = []
    if cfg.use_model and model_detector is not None:
        model_entities = model_detector.detect(text, page, errors)
    t1 = time.perf_counter()

    regex_entities: List[Entity] = []
    if cfg.use_regex or patterns:
        detector = RegexDetector(builtins=cfg.use_regex, timeout=cfg.regex_timeout)
        try:
            regex_entities = detector.detect(text, page, patterns, errors)
        except Exception as exc:
            err = DetectionError(f"regex detection failed: {exc}", page=page, detector="regex")
            logger.warning(str(err), extra={"page": page})
            errors.append(err)
    t2 = time.perf_counter()

    merged = merge_entities(model_entities, regex_entities)
    timings = {"model": t1 - t0, "regex": t2 - t1, "merge": time.perf_counter() - t2}
    logger.debug(
        "Page detected",
        extra={
            "page": page,
            "model": len(model_entities),
            "regex": len(regex_entities),
            "merged": len(merged),
        },
    )
    return PageDetection(page=page, entities=merged, errors=errors, timings=timings)


__all__ = ["PageDetection", "detect_page"]
