"""Redaction review state: entities, their boxes and each box's status.

Every box starts ``pending``. Reviewers confirm or reject boxes individually,
cycle them with :meth:`RedactionLedger.toggle`, or use the bulk operations.
Only ``confirmed`` boxes are handed to the applier.

Mutations are serialised with a re-entrant lock (one writer per document
session). Observers registered with :meth:`RedactionLedger.subscribe` are
called after each mutation that changed something, outside the lock.
"""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .logging import get_logger
from .types import (
    DEFAULT_ACTIVE_TYPES,
    Entity,
    EntityType,
    RedactionBox,
    RedactionStatus,
)

logger = get_logger(__name__)

_NEXT_STATUS = {
    RedactionStatus.PENDING: RedactionStatus.CONFIRMED,
    RedactionStatus.CONFIRMED: RedactionStatus.REJECTED,
    RedactionStatus.REJECTED: RedactionStatus.PENDING,
}


@dataclass(frozen=True)
class LedgerChange:
    kind: str
    box_ids: Tuple[str, ...] = ()
    entity_ids: Tuple[str, ...] = ()


Observer = Callable[[LedgerChange], None]


class RedactionLedger:
    """Owns entities, boxes and the active type filter for one document."""

    def __init__(self, active_types: Optional[Iterable[EntityType]] = None):
        self._lock = threading.RLock()
        self._entities: Dict[str, Entity] = {}
        self._boxes: Dict[str, RedactionBox] = {}
        self._active_types = set(
            DEFAULT_ACTIVE_TYPES if active_types is None else active_types
        )
        self._observers: List[Observer] = []

    # -- observers ---------------------------------------------------------

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self, change: LedgerChange) -> None:
        with self._lock:
            observers = list(self._observers)
        for cb in observers:
            cb(change)

    # -- queries -----------------------------------------------------------

    @property
    def entities(self) -> List[Entity]:
        with self._lock:
            return list(self._entities.values())

    @property
    def boxes(self) -> List[RedactionBox]:
        with self._lock:
            return list(self._boxes.values())

    @property
    def active_types(self) -> frozenset:
        with self._lock:
            return frozenset(self._active_types)

    def get_entity(self, entity_id: str) -> Entity:
        with self._lock:
            return self._entities[entity_id]

    def get_box(self, box_id: str) -> RedactionBox:
        with self._lock:
            return self._boxes[box_id]

    def boxes_for_entity(self, entity_id: str) -> List[RedactionBox]:
        with self._lock:
            return [b for b in self._boxes.values() if b.entity_id == entity_id]

    def visible_boxes(self, page: Optional[int] = None) -> List[RedactionBox]:
        """Boxes whose entity type passes the active filter."""
        with self._lock:
            return [
                b
                for b in self._boxes.values()
                if self._is_visible(b) and (page is None or b.page == page)
            ]

    def confirmed_boxes(self) -> List[RedactionBox]:
        """Snapshot of confirmed boxes; later status edits do not affect it."""
        with self._lock:
            return [
                b for b in self._boxes.values() if b.status is RedactionStatus.CONFIRMED
            ]

    def confirmed_count(self) -> int:
        return len(self.confirmed_boxes())

    def counts_by_type(self) -> Dict[EntityType, int]:
        with self._lock:
            return dict(Counter(e.type for e in self._entities.values()))

    def _entity_type(self, box: RedactionBox) -> Optional[EntityType]:
        entity = self._entities.get(box.entity_id) if box.entity_id else None
        return entity.type if entity is not None else None

    def _is_visible(self, box: RedactionBox) -> bool:
        return self._entity_type(box) in self._active_types

    # -- loading -----------------------------------------------------------

    def load(self, entities: Iterable[Entity], boxes: Iterable[RedactionBox]) -> None:
        """Replace all entities and boxes (a new processing run)."""
        with self._lock:
            self._entities = {e.id: e for e in entities}
            self._boxes = {b.id: b for b in boxes}
            change = LedgerChange(
                "load", tuple(self._boxes), tuple(self._entities)
            )
        self._notify(change)

    def add_entity(self, entity: Entity, boxes: Iterable[RedactionBox] = ()) -> None:
        """Add one entity (e.g. a manual selection) with its boxes.

        Nothing is stored if any box is owned by another entity.
        """
        linked = []
        for box in boxes:
            if box.entity_id is None:
                box = replace(box, entity_id=entity.id)
            elif box.entity_id != entity.id:
                raise ValueError("box belongs to a different entity")
            linked.append(box)
        with self._lock:
            self._entities[entity.id] = entity
            for box in linked:
                self._boxes[box.id] = box
        self._notify(LedgerChange("add", tuple(b.id for b in linked), (entity.id,)))

    def clear(self) -> None:
        with self._lock:
            change = LedgerChange("clear", tuple(self._boxes), tuple(self._entities))
            self._entities.clear()
            self._boxes.clear()
        self._notify(change)

    def remove_entity(self, entity_id: str) -> int:
        """Remove an entity and every box it owns; returns boxes removed."""
        with self._lock:
            if self._entities.pop(entity_id, None) is None:
                return 0
            owned = [bid for bid, b in self._boxes.items() if b.entity_id == entity_id]
            for bid in owned:
                del self._boxes[bid]
        self._notify(LedgerChange("remove_entity", tuple(owned), (entity_id,)))
        return len(owned)

    def remove_box(self, box_id: str) -> bool:
        with self._lock:
            if self._boxes.pop(box_id, None) is None:
                return False
        self._notify(LedgerChange("remove_box", (box_id,)))
        return True

    # -- type filter -------------------------------------------------------

    def set_active_types(self, types: Iterable[EntityType]) -> None:
        with self._lock:
            self._active_types = set(types)
        self._notify(LedgerChange("filter"))

    def toggle_type(self, etype: EntityType) -> bool:
        """Flip ``etype`` in the filter; returns whether it is now active."""
        with self._lock:
            if etype in self._active_types:
                self._active_types.discard(etype)
                active = False
            else:
                self._active_types.add(etype)
                active = True
        self._notify(LedgerChange("filter"))
        return active

    # -- status transitions ------------------------------------------------

    def _transition(
        self,
        kind: str,
        status: RedactionStatus,
        predicate: Callable[[RedactionBox], bool],
    ) -> int:
        with self._lock:
            changed = [
                b.id
                for b in self._boxes.values()
                if b.status is not status and predicate(b)
            ]
            for bid in changed:
                self._boxes[bid] = replace(self._boxes[bid], status=status)
        if changed:
            logger.debug(
                "Box status change",
                extra={"kind": kind, "status": status.value, "count": len(changed)},
            )
            self._notify(LedgerChange(kind, tuple(changed)))
        return len(changed)

    def set_status(self, box_id: str, status: RedactionStatus) -> RedactionBox:
        with self._lock:
            if box_id not in self._boxes:
                raise KeyError(box_id)
        self._transition("set_status", status, lambda b: b.id == box_id)
        return self.get_box(box_id)

    def toggle(self, box_id: str) -> RedactionBox:
        """Cycle pending -> confirmed -> rejected -> pending."""
        with self._lock:
            current = self._boxes[box_id].status
        return self.set_status(box_id, _NEXT_STATUS[current])

    def set_all_status(self, status: RedactionStatus) -> int:
        return self._transition("set_all", status, lambda b: True)

    def confirm_all_visible(self) -> int:
        """Confirm pending boxes whose entity type is active."""
        return self._transition(
            "confirm_visible",
            RedactionStatus.CONFIRMED,
            lambda b: b.status is RedactionStatus.PENDING and self._is_visible(b),
        )

    def reject_all_visible(self) -> int:
        """Reject pending boxes whose entity type is active."""
        return self._transition(
            "reject_visible",
            RedactionStatus.REJECTED,
            lambda b: b.status is RedactionStatus.PENDING and self._is_visible(b),
        )

    def confirm_all_by_type(self, etype: EntityType) -> int:
        return self._transition(
            "confirm_type",
            RedactionStatus.CONFIRMED,
            lambda b: self._entity_type(b) is etype,
        )

    def reject_all_by_type(self, etype: EntityType) -> int:
        return self._transition(
            "reject_type",
            RedactionStatus.REJECTED,
            lambda b: self._entity_type(b) is etype,
        )


__all__ = ["LedgerChange", "RedactionLedger"]
