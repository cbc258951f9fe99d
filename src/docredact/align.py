"""Map entity text onto positioned fragments to produce redaction rectangles.

Fragment geometry is only known per run of text, so character positions are
approximated proportionally: every character of a fragment is assumed to be
``fragment.width / len(fragment.text)`` wide.

Two passes are tried per entity:

1. Single fragment: the first fragment whose text contains the entity text.
2. Cross fragment: fragments are joined with single spaces into a linear
   stream (offsets recorded per fragment), the entity text is located in the
   stream and the partial rectangles of every overlapping fragment are merged
   into their bounding box.

Only the first textual occurrence is used; an entity whose text repeats
verbatim on a page always maps onto the first occurrence.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

import pandas as pd

from .errors import MappingMiss
from .logging import get_logger
from .types import Entity, PageLayout, PositionedFragment, Rect, RedactionBox

logger = get_logger(__name__)

BOX_PADDING = 5.0


def _char_width(frag: PositionedFragment) -> float:
    return frag.width / max(len(frag.text), 1)


def _partial_rect(frag: PositionedFragment, start_char: int, end_char: int) -> Rect:
    cw = _char_width(frag)
    return Rect(
        frag.x + start_char * cw,
        frag.y,
        (end_char - start_char) * cw,
        frag.height,
    )


def map_to_boxes(
    entity: Entity,
    fragments: Sequence[PositionedFragment],
    padding: float = BOX_PADDING,
) -> List[Rect]:
    """Return the rectangles covering ``entity`` (zero or one in practice).

    Parameters
    ----------
    entity:
        Entity whose ``text`` is searched for.
    fragments:
        Page fragments in extraction order.
    padding:
        Fixed expansion applied on every side.
    """
    needle = entity.text
    if not needle:
        return []

    for frag in fragments:
        idx = frag.text.find(needle)
        if idx != -1:
            return [_partial_rect(frag, idx, idx + len(needle)).inflate(padding)]

    offsets: List[Tuple[int, int]] = []
    cursor = 0
    for frag in fragments:
        offsets.append((cursor, cursor + len(frag.text)))
        cursor += len(frag.text) + 1  # space
    stream = " ".join(frag.text for frag in fragments)
    found = stream.find(needle)
    if found == -1:
        return []
    found_end = found + len(needle)

    parts: List[Rect] = []
    for frag, (fs, fe) in zip(fragments, offsets):
        if fe > found and fs < found_end:
            local_start = max(0, found - fs)
            local_end = min(len(frag.text), found_end - fs)
            if local_end > local_start:
                parts.append(_partial_rect(frag, local_start, local_end))
    if not parts:
        return []
    return [Rect.union(parts).inflate(padding)]


def map_entities(
    entities: Iterable[Entity],
    layouts: Sequence[PageLayout],
    padding: float = BOX_PADDING,
) -> Tuple[List[RedactionBox], List[MappingMiss]]:
    """Build pending boxes for every entity; collect the ones without geometry."""
    by_page: Dict[int, PageLayout] = {layout.page_number: layout for layout in layouts}
    boxes: List[RedactionBox] = []
    misses: List[MappingMiss] = []
    for entity in entities:
        layout = by_page.get(entity.page)
        rects = map_to_boxes(entity, layout.fragments, padding) if layout else []
        if not rects:
            miss = MappingMiss(entity.id, entity.text, entity.page)
            logger.info("Entity has no redaction box", extra=miss.to_dict())
            misses.append(miss)
            continue
        boxes.extend(RedactionBox.from_rect(r, entity.page, entity.id) for r in rects)
    return boxes, misses


def fragments_from_tsv(tsv_df: pd.DataFrame) -> List[PositionedFragment]:
    """Convert an OCR word table into fragments.

    Parameters
    ----------
    tsv_df:
        DataFrame with ``text``, ``left``, ``top``, ``width`` and ``height``
        columns (e.g. Tesseract TSV output). Rows with empty text are dropped.
    """
    words = tsv_df[["text", "left", "top", "width", "height"]].dropna(subset=["text"])
    out: List[PositionedFragment] = []
    for row in words.itertuples(index=False):
        text = str(row.text)
        if not text.strip():
            continue
        out.append(
            PositionedFragment(
                text=text,
                x=float(row.left),
                y=float(row.top),
                width=float(row.width),
                height=float(row.height),
            )
        )
    return out


def layout_from_tsv(
    page_number: int,
    tsv_df: pd.DataFrame,
    width: float = 0.0,
    height: float = 0.0,
) -> PageLayout:
    """Build a page layout from an OCR word table (space-joined text)."""
    fragments = fragments_from_tsv(tsv_df)
    return PageLayout(
        page_number=page_number,
        full_text=" ".join(f.text for f in fragments),
        fragments=fragments,
        width=width,
        height=height,
    )


__all__ = [
    "BOX_PADDING",
    "fragments_from_tsv",
    "layout_from_tsv",
    "map_entities",
    "map_to_boxes",
]
