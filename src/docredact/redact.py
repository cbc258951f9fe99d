"""Redaction routines.

Draws opaque rectangles over confirmed boxes and serialises the sanitised PDF,
and renders non-destructive previews.

Boxes live in rendering space (origin top-left, y down) while PDF user space
has its origin bottom-left, so every box is flipped with
``pdf_y = page_height - box.y - box.height`` before drawing.

Caveat: this is visual redaction only. The filled rectangles occlude the
content but the underlying text objects stay in the page content stream and
remain extractable unless the PDF library happens to drop them.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from PIL import Image, ImageDraw

from .errors import PageOutOfRange
from .logging import get_logger
from .pdfdoc import PdfDocument
from .types import ENTITY_COLORS, EntityType, RedactionBox, RedactionStatus

logger = get_logger(__name__)

FILL_RGB = (0.0, 0.0, 0.0)
WATERMARK_TEXT = "Redacted with DocRedactor"
WATERMARK_POSITION = (10.0, 10.0)
WATERMARK_SIZE = 8
WATERMARK_RGB = (0.5, 0.5, 0.5)
WATERMARK_OPACITY = 0.5
PREVIEW_RGB = (1.0, 0.0, 0.0)
PREVIEW_ALPHA = 0.3


def flip_y(box: RedactionBox, page_height: float) -> float:
    """Rendering-space top edge to PDF-space bottom edge."""
    return page_height - box.y - box.height


def group_by_page(boxes: Iterable[RedactionBox]) -> Dict[int, List[RedactionBox]]:
    grouped: Dict[int, List[RedactionBox]] = defaultdict(list)
    for box in boxes:
        grouped[box.page].append(box)
    return dict(grouped)


def _draw_boxes(doc: PdfDocument, boxes: Iterable[RedactionBox], **style) -> int:
    drawn = 0
    for page, page_boxes in group_by_page(boxes).items():
        try:
            _, height = doc.page_size(page)
        except PageOutOfRange as exc:
            # Stale boxes from another document.
            logger.debug("Skipping boxes outside the document", extra={"page": exc.page})
            continue
        for box in page_boxes:
            doc.draw_filled_rect(
                page, box.x, flip_y(box, height), box.width, box.height, **style
            )
            drawn += 1
    return drawn


def apply_redactions(
    document_bytes: bytes,
    confirmed_boxes: Iterable[RedactionBox],
    watermark: bool = False,
) -> bytes:
    """Burn confirmed boxes into the document and return the new PDF bytes.

    Parameters
    ----------
    document_bytes:
        Original PDF; must be non-empty and start with ``%PDF``.
    confirmed_boxes:
        Boxes to fill. Boxes that are not ``confirmed`` are ignored; boxes on
        pages the document does not have are skipped.
    watermark:
        Add a small semi-transparent caption to every page.

    Returns
    -------
    bytes
        The sanitised PDF. Nothing is written to disk here, so a failure
        leaves no partial output behind.

    Raises
    ------
    InputFormatError
        If the bytes are empty, lack the PDF header, or cannot be parsed.
    """
    boxes = [b for b in confirmed_boxes if b.status is RedactionStatus.CONFIRMED]
    with PdfDocument.load(document_bytes) as doc:
        drawn = _draw_boxes(doc, boxes, color=FILL_RGB, opacity=1.0, border_width=0.0)
        if watermark:
            for number in range(1, doc.page_count + 1):
                doc.draw_text(
                    number,
                    *WATERMARK_POSITION,
                    WATERMARK_TEXT,
                    size=WATERMARK_SIZE,
                    color=WATERMARK_RGB,
                    opacity=WATERMARK_OPACITY,
                )
        doc.flatten_forms()
        out = doc.save()
    logger.info(
        "Applied redactions",
        extra={"boxes": drawn, "skipped": len(boxes) - drawn, "watermark": watermark},
    )
    return out


def preview_redactions(document_bytes: bytes, boxes: Iterable[RedactionBox]) -> bytes:
    """Return a copy of the PDF with translucent red outlines over ``boxes``."""
    with PdfDocument.load(document_bytes) as doc:
        _draw_boxes(
            doc,
            list(boxes),
            color=PREVIEW_RGB,
            opacity=PREVIEW_ALPHA,
            border_width=1.0,
            border_color=PREVIEW_RGB,
        )
        return doc.save()


def _outline_color(
    box: RedactionBox, entity_types: Mapping[str, EntityType]
) -> Tuple[int, int, int]:
    if box.status is RedactionStatus.CONFIRMED:
        return (0, 255, 0)
    if box.status is RedactionStatus.REJECTED:
        return (255, 0, 0)
    etype = entity_types.get(box.entity_id or "")
    return ENTITY_COLORS[etype] if etype is not None else (249, 115, 22)


def preview_images(
    document_bytes: bytes,
    boxes: Iterable[RedactionBox],
    entity_types: Optional[Mapping[str, EntityType]] = None,
    *,
    dpi: int = 72,
    width: int = 3,
) -> List[Image.Image]:
    """Rasterise pages and outline boxes for QA review.

    Confirmed boxes are green, rejected red, pending boxes use their entity
    type colour.
    """
    entity_types = entity_types or {}
    scale = dpi / 72.0
    grouped = group_by_page(boxes)
    images: List[Image.Image] = []
    with PdfDocument.load(document_bytes) as doc:
        for number in range(1, doc.page_count + 1):
            pix = doc.render(number, dpi=dpi)
            img = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
            draw = ImageDraw.Draw(img)
            for box in grouped.get(number, []):
                rect = doc.display_rect(number, box.x, box.y, box.width, box.height)
                draw.rectangle(
                    [rect.x0 * scale, rect.y0 * scale, rect.x1 * scale, rect.y1 * scale],
                    outline=_outline_color(box, entity_types),
                    width=width,
                )
            images.append(img)
    return images


__all__ = [
    "WATERMARK_TEXT",
    "apply_redactions",
    "flip_y",
    "group_by_page",
    "preview_images",
    "preview_redactions",
]
