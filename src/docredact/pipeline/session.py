"""Interactive redaction session.

A :class:`RedactionSession` owns everything one reviewer works on: the
current document, its layouts, the :class:`~docredact.ledger.RedactionLedger`,
the custom patterns (which outlive individual documents) and a lease on the
model handle. Every document load starts a new generation; a processing run
that finishes after its document was replaced or cancelled raises
:class:`concurrent.futures.CancelledError` and leaves the ledger untouched.
"""

from __future__ import annotations

import threading
from concurrent.futures import CancelledError, Executor, Future, ThreadPoolExecutor
from dataclasses import replace
from typing import Iterable, List, Optional

from PIL import Image

from docredact.errors import TierLimitError
from docredact.layout import page_count
from docredact.ledger import RedactionLedger
from docredact.logging import get_logger
from docredact.model_detect import ModelDetector, ModelHandle, spacy_handle
from docredact.pdfdoc import check_pdf_bytes
from docredact.redact import apply_redactions, preview_images, preview_redactions
from docredact.regex_detect import CustomPattern
from docredact.tier import TierLimits
from docredact.types import EntityType, PageLayout

from .config import RunConfig
from .orchestration import DocumentResult, process_document

logger = get_logger(__name__)


def redacted_file_name(name: str) -> str:
    """``report.pdf`` -> ``report_redacted.pdf``; names without a dot get a suffix."""
    if "." not in name:
        return f"{name}_redacted"
    stem, _, ext = name.rpartition(".")
    return f"{stem}_redacted.{ext}"


class RedactionSession:
    """Single-writer owner of one document's redaction state.

    Parameters
    ----------
    cfg:
        Detection settings; defaults to :meth:`RunConfig.from_settings`.
    tier:
        Quotas; defaults to the built-in free limits.
    model_handle:
        Shared token classifier handle. When omitted and the model is enabled
        a spaCy handle is created for ``cfg.spacy_model``.
    active_types:
        Initial entity type filter of the ledger.
    export_executor:
        Executor used by :meth:`export`. The session creates (and shuts down)
        a single-worker thread pool when none is given.
    """

    def __init__(
        self,
        cfg: Optional[RunConfig] = None,
        tier: Optional[TierLimits] = None,
        model_handle: Optional[ModelHandle] = None,
        *,
        active_types: Optional[Iterable[EntityType]] = None,
        export_executor: Optional[Executor] = None,
    ):
        self.cfg = cfg or RunConfig.from_settings()
        self.tier = tier or TierLimits()
        if model_handle is None and self.cfg.use_model:
            model_handle = spacy_handle(self.cfg.spacy_model, self.cfg.model_default_score)
        self.model_handle = model_handle
        self.ledger = RedactionLedger(active_types)
        self._lock = threading.RLock()
        self._patterns: List[CustomPattern] = []
        self._document: Optional[bytes] = None
        self._file_name: Optional[str] = None
        self._layouts: List[PageLayout] = []
        self._last_result: Optional[DocumentResult] = None
        self._generation = 0
        self._cancel_event = threading.Event()
        self._leased = False
        self._owns_executor = export_executor is None
        self._executor: Executor = export_executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="docredact-export"
        )

    # -- lifecycle ---------------------------------------------------------

    def open(self) -> "RedactionSession":
        """Take a lease on the model so it stays loaded for the session."""
        with self._lock:
            if self._leased or self.model_handle is None or not self.cfg.use_model:
                return self
            try:
                self.model_handle.acquire()
            except Exception as exc:
                # Detection still runs; pages report the model failure.
                logger.warning("Model initialisation failed", extra={"error": str(exc)})
                return self
            self._leased = True
        return self

    def close(self) -> None:
        self.cancel()
        with self._lock:
            if self._leased and self.model_handle is not None:
                self.model_handle.release()
                self._leased = False
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "RedactionSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- custom patterns ---------------------------------------------------

    @property
    def custom_patterns(self) -> List[CustomPattern]:
        with self._lock:
            return list(self._patterns)

    def _pattern_index(self, name: str) -> int:
        for i, pat in enumerate(self._patterns):
            if pat.name == name:
                return i
        raise KeyError(name)

    def add_custom_pattern(
        self, name: str, pattern: str, enabled: bool = True
    ) -> CustomPattern:
        """Validate and store a pattern.

        Raises
        ------
        TierLimitError
            If the tier's custom pattern quota is already used up.
        PatternCompileError
            If ``pattern`` does not compile; nothing is stored.
        ValueError
            If a pattern with the same name exists.
        """
        with self._lock:
            if len(self._patterns) >= self.tier.max_custom_patterns:
                raise TierLimitError(
                    f"{self.tier.name.capitalize()} tier allows only "
                    f"{self.tier.max_custom_patterns} custom patterns"
                )
            if any(p.name == name for p in self._patterns):
                raise ValueError(f"custom pattern {name!r} already exists")
            created = CustomPattern(name=name, pattern=pattern, enabled=enabled)
            self._patterns.append(created)
        logger.info("Custom pattern added", extra={"pattern_name": name})
        return created

    def update_custom_pattern(
        self,
        name: str,
        *,
        pattern: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> CustomPattern:
        with self._lock:
            i = self._pattern_index(name)
            current = self._patterns[i]
            updated = replace(
                current,
                pattern=current.pattern if pattern is None else pattern,
                enabled=current.enabled if enabled is None else enabled,
            )
            self._patterns[i] = updated
        return updated

    def remove_custom_pattern(self, name: str) -> None:
        with self._lock:
            del self._patterns[self._pattern_index(name)]

    # -- document ----------------------------------------------------------

    @property
    def document(self) -> Optional[bytes]:
        return self._document

    @property
    def file_name(self) -> Optional[str]:
        return self._file_name

    @property
    def layouts(self) -> List[PageLayout]:
        with self._lock:
            return list(self._layouts)

    @property
    def last_result(self) -> Optional[DocumentResult]:
        return self._last_result

    @property
    def generation(self) -> int:
        return self._generation

    def load_document(self, data: bytes, file_name: Optional[str] = None) -> int:
        """Replace the current document; returns its page count.

        In-flight processing for the previous document is cancelled and all
        entities and boxes are discarded. Custom patterns are kept.

        Raises
        ------
        InputFormatError
            If ``data`` is not a PDF.
        TierLimitError
            If the document has more pages than the tier allows.
        """
        check_pdf_bytes(data)
        pages = page_count(data)
        if not self.tier.allows_pages(pages):
            raise TierLimitError(
                f"{self.tier.name.capitalize()} tier limit: Maximum "
                f"{self.tier.max_pages} pages allowed. This document has {pages} pages."
            )
        with self._lock:
            self._reset(data, file_name)
        logger.info("Document loaded", extra={"pages": pages, "file_name": file_name})
        return pages

    def clear_document(self) -> None:
        with self._lock:
            self._reset(None, None)

    def _reset(self, data: Optional[bytes], file_name: Optional[str]) -> None:
        self._cancel_event.set()
        self._generation += 1
        self._document = data
        self._file_name = file_name
        self._layouts = []
        self._last_result = None
        self.ledger.clear()

    def cancel(self) -> None:
        """Abort the in-flight run; its results will be discarded."""
        with self._lock:
            self._cancel_event.set()
            self._generation += 1

    # -- processing --------------------------------------------------------

    def _model_detector(self) -> Optional[ModelDetector]:
        if not self.cfg.use_model or self.model_handle is None:
            return None
        return ModelDetector(
            self.model_handle,
            min_length=self.cfg.min_text_length,
            min_confidence=self.cfg.min_confidence,
        )

    def process(self) -> DocumentResult:
        """Detect and map entities for the current document.

        Raises
        ------
        RuntimeError
            If no document is loaded.
        concurrent.futures.CancelledError
            If the run was cancelled or the document replaced meanwhile.
        """
        with self._lock:
            if self._document is None:
                raise RuntimeError("no document loaded")
            self._cancel_event = threading.Event()
            cancel_event = self._cancel_event
            generation = self._generation
            data = self._document
            patterns = list(self._patterns)
        result = process_document(
            data, self.cfg, self._model_detector(), patterns, cancel_event
        )
        with self._lock:
            if generation != self._generation or cancel_event.is_set():
                logger.info("Discarding stale results", extra={"generation": generation})
                raise CancelledError()
            self._layouts = list(result.layouts)
            self._last_result = result
            self.ledger.load(result.entities, result.boxes)
        return result

    # -- output ------------------------------------------------------------

    def export(self, watermark: Optional[bool] = None) -> "Future[bytes]":
        """Apply confirmed boxes in the background.

        The confirmed set is captured now; status edits made while the export
        runs do not affect its output.
        """
        with self._lock:
            if self._document is None:
                raise RuntimeError("no document loaded")
            data = self._document
            boxes = self.ledger.confirmed_boxes()
        stamp = bool(watermark) or self.tier.watermark_required
        logger.info("Export submitted", extra={"boxes": len(boxes), "watermark": stamp})
        return self._executor.submit(apply_redactions, data, boxes, stamp)

    def preview(self) -> bytes:
        with self._lock:
            if self._document is None:
                raise RuntimeError("no document loaded")
            data = self._document
            boxes = self.ledger.visible_boxes()
        return preview_redactions(data, boxes)

    def preview_pages(self, dpi: int = 72) -> List[Image.Image]:
        with self._lock:
            if self._document is None:
                raise RuntimeError("no document loaded")
            data = self._document
            boxes = self.ledger.boxes
            types = {e.id: e.type for e in self.ledger.entities}
        return preview_images(data, boxes, types, dpi=dpi)

    def output_file_name(self) -> str:
        return redacted_file_name(self._file_name or "document.pdf")


__all__ = ["RedactionSession", "redacted_file_name"]
