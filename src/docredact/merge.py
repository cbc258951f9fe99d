"""Merge detector outputs into one non-overlapping entity stream.

Overlap resolution keeps the higher-confidence entity, and on a confidence tie
the one with the longer text. A candidate is compared only against the first
accepted entity it overlaps (first match wins). Because candidates are visited
in ascending ``start`` order per page and accepted entities stay disjoint, a
candidate can overlap at most one accepted entity: every accepted entity
starts at or before the candidate, so two of them covering the candidate's
start would already overlap each other.
"""

from __future__ import annotations

from itertools import chain
from typing import Iterable, List, Optional

from .types import Entity


def entities_overlap(a: Entity, b: Entity) -> bool:
    """Half-open interval intersection on the same page."""
    return a.page == b.page and a.start < b.end and b.start < a.end


def _wins(candidate: Entity, accepted: Entity) -> bool:
    if candidate.confidence > accepted.confidence:
        return True
    return (
        candidate.confidence == accepted.confidence
        and len(candidate.text) > len(accepted.text)
    )


def merge_entities(*entity_lists: Iterable[Entity]) -> List[Entity]:
    """Combine entity lists into a deduplicated, disjoint list.

    Parameters
    ----------
    entity_lists:
        Detector outputs. Their order only matters for ties: the sort is
        stable, so on equal ``(page, start)`` earlier lists are visited first.

    Returns
    -------
    list[Entity]
        Accepted entities across all pages. A replacement keeps the slot of
        the entity it replaced.
    """
    candidates = sorted(chain.from_iterable(entity_lists), key=lambda e: (e.page, e.start))
    merged: List[Entity] = []
    for cand in candidates:
        idx = _first_overlap(merged, cand)
        if idx is None:
            merged.append(cand)
        elif _wins(cand, merged[idx]):
            merged[idx] = cand
    return merged


def _first_overlap(accepted: List[Entity], cand: Entity) -> Optional[int]:
    for i, existing in enumerate(accepted):
        if entities_overlap(existing, cand):
            return i
    return None


__all__ = ["entities_overlap", "merge_entities"]
