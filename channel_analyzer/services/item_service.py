"""
Service layer for the per-item lifecycle state machine.
Handles discovery upserts, the atomic claim, and terminal transitions.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from channel_analyzer.models.item import ITEM_STATUSES, Item
from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class ItemNotFoundError(Exception):
    """Raised when an item is not found in the database."""
    pass


class ItemStore:
    """
    Durable store for items and their status transitions.

    Every transition is a conditional UPDATE on the current status, so repeated
    or concurrent calls are no-ops instead of errors. The claim is the only
    mutual exclusion between overlapping batch runs.
    """

    def __init__(self, db: Session) -> None:
        """
        Initialize the item store.

        Args:
            db: Database session for operations
        """
        self.db: Session = db

    def upsert(self, item_id: str, title: str, published_at: datetime, duration_sec: Optional[int] = None) -> bool:
        """
        Insert a newly discovered item as queued, or do nothing if it exists.

        Args:
            item_id: External catalog id
            title: Item title
            published_at: Catalog publish timestamp
            duration_sec: Duration reported by the catalog, if known

        Returns:
            True if the item was inserted, False if it was already present
        """
        if self.db.get(Item, item_id) is not None:
            logger.debug("Item already known, skipping", item_id=item_id)
            return False

        item = Item(
            id=item_id,
            title=title,
            published_at=published_at,
            duration_sec=duration_sec,
            status="queued",
        )

        try:
            self.db.add(item)
            self.db.commit()
        except IntegrityError:
            # Another run inserted it between our check and our insert
            self.db.rollback()
            logger.info("Item inserted concurrently, skipping", item_id=item_id)
            return False

        logger.info("Queued new item", item_id=item_id, title=title)
        return True

    def claim(self, item_id: str) -> bool:
        """
        Atomically move an item from queued to processing.

        Returns:
            True if this caller won the claim, False if the item was not queued
        """
        return self._transition(item_id, from_status="queued", to_status="processing")

    def mark_succeeded(self, item_id: str, duration_sec: Optional[int] = None) -> bool:
        """
        Move a processing item to succeeded.

        Args:
            item_id: Item id
            duration_sec: Duration measured during extraction; only fills a missing value

        Returns:
            True if the transition happened
        """
        changed = self._transition(
            item_id,
            from_status="processing",
            to_status="succeeded",
            processed_at=datetime.utcnow(),
            notes=None,
        )
        if changed and duration_sec is not None:
            item = self.db.get(Item, item_id)
            if item is not None and item.duration_sec is None:
                item.duration_sec = duration_sec
                self.db.commit()
        return changed

    def mark_failed(self, item_id: str, reason: str) -> bool:
        """
        Move a processing item to failed, recording the reason in notes.

        Returns:
            True if the transition happened
        """
        return self._transition(
            item_id,
            from_status="processing",
            to_status="failed",
            processed_at=datetime.utcnow(),
            notes=reason or "Unknown error",
        )

    def reset(self, item_id: str) -> Item:
        """
        Explicitly put an item back in the queue for reprocessing.

        This is the only operation allowed to move status backwards.

        Raises:
            ItemNotFoundError: If the item does not exist
        """
        item = self.get(item_id)
        previous = item.status
        item.status = "queued"
        item.notes = None
        item.processed_at = None
        self.db.commit()
        self.db.refresh(item)

        logger.info("Item reset for reprocessing", item_id=item_id, previous_status=previous)
        return item

    def get(self, item_id: str) -> Item:
        """
        Get an item by id.

        Raises:
            ItemNotFoundError: If the item does not exist
        """
        item = self.db.get(Item, item_id)
        if item is None:
            logger.error("Item not found", item_id=item_id)
            raise ItemNotFoundError(f"Item {item_id} not found")
        return item

    def existing_ids(self, item_ids: List[str]) -> List[str]:
        """Return the subset of ids already stored."""
        if not item_ids:
            return []
        rows = self.db.query(Item.id).filter(Item.id.in_(item_ids)).all()
        return [row[0] for row in rows]

    def list_by_status(self, status: str) -> List[Item]:
        """
        List items in a given status, newest publication first.

        Raises:
            ValueError: If the status is not a known item status
        """
        if status not in ITEM_STATUSES:
            raise ValueError(f"Unknown item status: {status}")

        return (self.db.query(Item)
                .filter(Item.status == status)
                .order_by(Item.published_at.desc(), Item.id)
                .all())

    def recent(self, n: int) -> List[Item]:
        """List the n most recently published items regardless of status."""
        return (self.db.query(Item)
                .order_by(Item.published_at.desc(), Item.id)
                .limit(max(n, 0))
                .all())

    def _transition(self, item_id: str, from_status: str, to_status: str, **values) -> bool:
        """Compare-and-set the status column; the rowcount decides the outcome."""
        try:
            result = self.db.execute(
                update(Item)
                .where(Item.id == item_id, Item.status == from_status)
                .values(status=to_status, **values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to update item status",
                         item_id=item_id,
                         from_status=from_status,
                         to_status=to_status,
                         error=str(e))
            raise

        changed = result.rowcount == 1
        if changed:
            # Objects loaded earlier in this session must see the new status
            item = self.db.get(Item, item_id)
            if item is not None:
                self.db.refresh(item)
            logger.info("Item status updated", item_id=item_id, status=to_status)
        else:
            logger.info("Item status unchanged",
                        item_id=item_id,
                        expected_status=from_status,
                        requested_status=to_status)
        return changed
