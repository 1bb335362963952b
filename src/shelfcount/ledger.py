"""Count reconciliation: an in-memory inventory ledger.

Counts live for the lifetime of the process only.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from shelfcount.vision.types import CountReport

logger = logging.getLogger(__name__)


class Reconciler(Protocol):
    """Consumer of confirmed session results."""

    def report(self, report: CountReport) -> None:
        """Receive the final count and boxes of one confirmed session."""
        ...


@dataclass(frozen=True)
class InventoryItem:
    id: str
    product_name: str
    sku: str
    count: int = 0
    is_counted: bool = False
    detected_boxes: int = 0


@dataclass(frozen=True)
class LedgerSummary:
    total_items: int
    counted_items: int

    @property
    def progress(self) -> float:
        """Percentage of items counted, 0.0 for an empty ledger."""
        if self.total_items == 0:
            return 0.0
        return round(self.counted_items / self.total_items * 100, 1)


class InventoryLedger:
    """Thread-safe store of inventory items and their latest counts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, InventoryItem] = {}

    def add_item(self, product_name: str, sku: str) -> InventoryItem:
        item = InventoryItem(id=uuid.uuid4().hex, product_name=product_name, sku=sku)
        with self._lock:
            self._items[item.id] = item
        logger.info("Registered item %s (%s)", item.sku, item.product_name)
        return item

    def get(self, item_id: str) -> InventoryItem:
        with self._lock:
            try:
                return self._items[item_id]
            except KeyError:
                raise KeyError(f"Unknown item: {item_id}") from None

    def items(self) -> list[InventoryItem]:
        with self._lock:
            return list(self._items.values())

    def set_count(self, item_id: str, count: int, detected_boxes: int = 0) -> InventoryItem:
        """Replace an item's count; an item is counted once its count is positive."""
        with self._lock:
            try:
                current = self._items[item_id]
            except KeyError:
                raise KeyError(f"Unknown item: {item_id}") from None
            updated = replace(current, count=count, is_counted=count > 0, detected_boxes=detected_boxes)
            self._items[item_id] = updated
        logger.info("Item %s counted: %d", updated.sku, count)
        return updated

    def summary(self) -> LedgerSummary:
        with self._lock:
            counted = sum(1 for item in self._items.values() if item.is_counted)
            return LedgerSummary(total_items=len(self._items), counted_items=counted)

    def reconciler_for(self, item_id: str) -> ItemReconciler:
        """Return a reconciler that writes confirmed counts to ``item_id``."""
        self.get(item_id)
        return ItemReconciler(ledger=self, item_id=item_id)


@dataclass(frozen=True)
class ItemReconciler:
    """Binds a capture session to one ledger item."""

    ledger: InventoryLedger
    item_id: str

    def report(self, report: CountReport) -> None:
        self.ledger.set_count(self.item_id, report.final_count, detected_boxes=len(report.boxes))
