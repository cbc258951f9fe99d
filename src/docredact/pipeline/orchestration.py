"""High-level orchestration for detection runs.

Pages are independent, so detection runs one page per task on a bounded
thread pool. Completion order does not matter: the final entity list is
re-sorted by ``(page, start)``. A cancellation event aborts the run with
:class:`concurrent.futures.CancelledError`; nothing computed for an aborted
run is returned.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from tqdm import tqdm

from docredact.align import map_entities
from docredact.errors import DetectionError, MappingMiss
from docredact.layout import extract_layout
from docredact.logging import get_logger
from docredact.model_detect import ModelDetector, spacy_handle
from docredact.regex_detect import PatternLike
from docredact.types import Entity, PageLayout, RedactionBox

from .config import PageResult, RunConfig
from .detection import PageDetection, detect_page

logger = get_logger(__name__)


@dataclass
class DocumentDetection:
    entities: List[Entity]
    pages: Dict[int, PageDetection]


@dataclass
class DocumentResult:
    layouts: List[PageLayout]
    entities: List[Entity]
    boxes: List[RedactionBox]
    misses: List[MappingMiss] = field(default_factory=list)
    pages: List[PageResult] = field(default_factory=list)


def build_model_detector(cfg: RunConfig) -> Optional[ModelDetector]:
    if not cfg.use_model:
        return None
    return ModelDetector(
        spacy_handle(cfg.spacy_model, cfg.model_default_score),
        min_length=cfg.min_text_length,
        min_confidence=cfg.min_confidence,
    )


def _check_cancel(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CancelledError()


def detect_document(
    layouts: Sequence[PageLayout],
    cfg: RunConfig,
    model_detector: Optional[ModelDetector] = None,
    patterns: Sequence[PatternLike] = (),
    cancel_event: Optional[threading.Event] = None,
) -> DocumentDetection:
    """Detect entities on every page concurrently.

    Raises
    ------
    concurrent.futures.CancelledError
        If ``cancel_event`` is set before the run completes.
    """

    def _run(layout: PageLayout) -> PageDetection:
        _check_cancel(cancel_event)
        return detect_page(layout, cfg, model_detector, patterns)

    pages: Dict[int, PageDetection] = {}
    with ThreadPoolExecutor(max_workers=max(1, int(cfg.workers))) as ex:
        futs = {ex.submit(_run, layout): layout.page_number for layout in layouts}
        try:
            for fut in tqdm(
                as_completed(futs),
                total=len(futs),
                desc="Detect",
                disable=not cfg.show_progress,
            ):
                page = futs[fut]
                try:
                    pages[page] = fut.result()
                except CancelledError:
                    raise
                except Exception as exc:
                    err = DetectionError(f"page detection failed: {exc}", page=page)
                    logger.error(str(err), extra={"page": page}, exc_info=exc)
                    pages[page] = PageDetection(page=page, entities=[], errors=[err])
        except CancelledError:
            for fut in futs:
                fut.cancel()
            raise
    _check_cancel(cancel_event)

    entities = sorted(
        (e for page in sorted(pages) for e in pages[page].entities),
        key=lambda e: (e.page, e.start),
    )
    return DocumentDetection(entities=entities, pages=pages)


def _page_results(
    layouts: Sequence[PageLayout],
    detection: DocumentDetection,
    boxes: Sequence[RedactionBox],
    misses: Sequence[MappingMiss],
    instrument: bool,
) -> List[PageResult]:
    results: List[PageResult] = []
    for layout in layouts:
        page = layout.page_number
        det = detection.pages.get(page)
        results.append(
            PageResult(
                page_number=page,
                text=layout.full_text,
                entities=[e.to_dict() for e in (det.entities if det else [])],
                boxes=[b.to_dict() for b in boxes if b.page == page],
                errors=[_error_dict(err, page) for err in (det.errors if det else [])],
                unmapped=[m.to_dict() for m in misses if m.page == page],
                timings=det.timings if (det and instrument) else None,
            )
        )
    return results


def _error_dict(err: Exception, page: int) -> Dict[str, object]:
    if isinstance(err, DetectionError):
        return err.to_dict()
    return {"page": page, "detector": "regex", "message": str(err)}


def process_document(
    document_bytes: bytes,
    cfg: RunConfig,
    model_detector: Optional[ModelDetector] = None,
    patterns: Sequence[PatternLike] = (),
    cancel_event: Optional[threading.Event] = None,
) -> DocumentResult:
    """Extract layout, detect entities and map them to pending boxes."""
    t0 = time.perf_counter()
    layouts = extract_layout(document_bytes)
    _check_cancel(cancel_event)
    detection = detect_document(layouts, cfg, model_detector, patterns, cancel_event)
    boxes, misses = map_entities(detection.entities, layouts)
    _check_cancel(cancel_event)
    logger.info(
        "Document processed",
        extra={
            "pages": len(layouts),
            "entities": len(detection.entities),
            "boxes": len(boxes),
            "unmapped": len(misses),
            "seconds": round(time.perf_counter() - t0, 4),
        },
    )
    return DocumentResult(
        layouts=layouts,
        entities=detection.entities,
        boxes=boxes,
        misses=misses,
        pages=_page_results(layouts, detection, boxes, misses, cfg.instrument),
    )


__all__ = [
    "DocumentDetection",
    "DocumentResult",
    "build_model_detector",
    "detect_document",
    "process_document",
]
