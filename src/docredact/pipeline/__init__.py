"""Composable building blocks for the DocRedact pipeline."""

from .config import RunConfig, PageResult
from .detection import PageDetection, detect_page
from .orchestration import (
    DocumentResult,
    build_model_detector,
    detect_document,
    process_document,
)
from .session import RedactionSession, redacted_file_name

__all__ = [
    "RunConfig",
    "PageResult",
    "PageDetection",
    "detect_page",
    "DocumentResult",
    "build_model_detector",
    "detect_document",
    "process_document",
    "RedactionSession",
    "redacted_file_name",
]
