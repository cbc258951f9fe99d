"""Thin PyMuPDF wrapper used as the document-mutation backend.

Drawing methods take PDF user-space coordinates (origin at the bottom-left,
y growing upwards) measured on the unrotated page, the same frame text
extraction reports in. They are flipped back to PyMuPDF's top-left space
against the unrotated height, so /Rotate never moves a box. Page numbers are
1-based.
"""

from __future__ import annotations

from typing import Optional, Tuple

import fitz  # PyMuPDF

from .errors import InputFormatError, PageOutOfRange
from .logging import get_logger

logger = get_logger(__name__)

PDF_MAGIC = b"%PDF"

Color = Tuple[float, float, float]


def check_pdf_bytes(data: bytes) -> None:
    """Raise :class:`InputFormatError` unless ``data`` looks like a PDF."""
    if data is None or len(data) == 0:
        raise InputFormatError("PDF data is empty")
    header = bytes(data[: len(PDF_MAGIC)])
    if header != PDF_MAGIC:
        raise InputFormatError(
            f"Invalid PDF: header is {header!r} instead of {PDF_MAGIC!r}"
        )


class PdfDocument:
    """A loaded PDF exposing the handful of operations redaction needs."""

    def __init__(self, doc: "fitz.Document"):
        self._doc = doc

    @classmethod
    def load(cls, data: bytes) -> "PdfDocument":
        check_pdf_bytes(data)
        try:
            doc = fitz.open(stream=bytes(data), filetype="pdf")
        except Exception as exc:
            raise InputFormatError(f"Could not parse PDF: {exc}") from exc
        return cls(doc)

    def __enter__(self) -> "PdfDocument":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._doc.close()

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    def page(self, number: int) -> "fitz.Page":
        if number < 1 or number > self.page_count:
            raise PageOutOfRange(number, self.page_count)
        return self._doc[number - 1]

    def page_size(self, number: int) -> Tuple[float, float]:
        """Width and height of the unrotated page."""
        box = self.page(number).cropbox
        return box.width, box.height

    def _unflip(
        self, page: "fitz.Page", x: float, y: float, width: float, height: float
    ) -> "fitz.Rect":
        top = page.cropbox.height - y - height
        return fitz.Rect(x, top, x + width, top + height)

    def display_rect(
        self, number: int, x: float, y: float, width: float, height: float
    ) -> "fitz.Rect":
        """Map an unrotated top-left rect onto the page as rendered."""
        page = self.page(number)
        return fitz.Rect(x, y, x + width, y + height) * page.rotation_matrix

    def draw_filled_rect(
        self,
        number: int,
        x: float,
        y: float,
        width: float,
        height: float,
        *,
        color: Color = (0.0, 0.0, 0.0),
        opacity: float = 1.0,
        border_width: float = 0.0,
        border_color: Optional[Color] = None,
    ) -> None:
        page = self.page(number)
        rect = self._unflip(page, x, y, width, height)
        stroke = border_color if border_width > 0 else None
        page.draw_rect(
            rect,
            color=stroke,
            fill=color,
            width=border_width,
            fill_opacity=opacity,
            stroke_opacity=1.0,
            overlay=True,
        )

    def draw_text(
        self,
        number: int,
        x: float,
        y: float,
        text: str,
        *,
        size: float = 8,
        color: Color = (0.5, 0.5, 0.5),
        opacity: float = 0.5,
    ) -> None:
        page = self.page(number)
        point = fitz.Point(x, page.cropbox.height - y)
        page.insert_text(
            point,
            text,
            fontsize=size,
            fontname="helv",
            color=color,
            fill_opacity=opacity,
            stroke_opacity=opacity,
        )

    def flatten_forms(self) -> bool:
        """Bake form widgets into page content; best effort."""
        if not self._doc.is_form_pdf:
            return False
        try:
            self._doc.bake(annots=False, widgets=True)
        except Exception as exc:
            logger.warning("Form flattening failed", extra={"error": str(exc)})
            return False
        return True

    def save(self) -> bytes:
        return self._doc.tobytes(garbage=3, deflate=True)

    def render(self, number: int, dpi: int = 72) -> "fitz.Pixmap":
        return self.page(number).get_pixmap(dpi=dpi)


__all__ = ["PDF_MAGIC", "PdfDocument", "check_pdf_bytes"]
