"""Text layout extraction.

Turns each PDF page into a :class:`PageLayout`: positioned text fragments (one
per PyMuPDF text span, in extraction order) plus the page's full text, which
is the fragments joined with single spaces. Entity offsets are relative to
that full text.
"""

from __future__ import annotations

from typing import List

import fitz  # PyMuPDF

from .pdfdoc import PdfDocument
from .types import PageLayout, PositionedFragment


def page_layout(page: "fitz.Page", page_number: int) -> PageLayout:
    fragments: List[PositionedFragment] = []
    data = page.get_text("dict")
    for block in data.get("blocks", []):
        if block.get("type", 0) != 0:  # image block
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = span.get("text", "")
                if not text.strip():
                    continue
                x0, y0, x1, y1 = span["bbox"]
                fragments.append(
                    PositionedFragment(
                        text=text, x=x0, y=y0, width=x1 - x0, height=y1 - y0
                    )
                )
    return PageLayout(
        page_number=page_number,
        full_text=" ".join(f.text for f in fragments).strip(),
        fragments=fragments,
        width=page.cropbox.width,
        height=page.cropbox.height,
    )


def extract_layout(document_bytes: bytes) -> List[PageLayout]:
    """Extract layouts for every page of a PDF."""
    with PdfDocument.load(document_bytes) as doc:
        return [page_layout(doc.page(n), n) for n in range(1, doc.page_count + 1)]


def page_count(document_bytes: bytes) -> int:
    with PdfDocument.load(document_bytes) as doc:
        return doc.page_count


__all__ = ["extract_layout", "page_count", "page_layout"]
