"""Item registry: item records and their status transitions."""

import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from tqdm import tqdm

from ..auth import Action, Authorizer, default_authorizer
from ..clock import Clock, to_iso, utcnow
from ..db.models import Item
from ..db.schemas import ItemCreate, ItemResponse, ItemStatus
from ..db.sqlite import Database, get_db
from ..errors import (
    ConcurrentModification,
    InvalidTransition,
    ItemUnavailable,
    NotFound,
    PermissionDenied,
)

logger = logging.getLogger(__name__)


def check_item_invariant(
    code: str,
    status: ItemStatus,
    borrower: Optional[str],
    due_date: Optional[datetime],
) -> None:
    """Borrower and due date are set together, and only for loaned statuses."""
    if (borrower is None) != (due_date is None):
        raise InvalidTransition(
            f"Item '{code}': borrower and due date must be set or cleared together"
        )
    if status.is_loaned and borrower is None:
        raise InvalidTransition(f"Item '{code}': status {status.value} requires a borrower")
    if not status.is_loaned and borrower is not None:
        raise InvalidTransition(f"Item '{code}': status {status.value} cannot have a borrower")


class ItemRegistry:
    """Owns item rows. Nothing else writes item state."""

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Clock] = None,
        authorizer: Optional[Authorizer] = None,
    ):
        """Initialize item registry.

        Args:
            db: Database instance
            clock: Callable returning the current UTC time
            authorizer: Capability check for privileged operations
        """
        self.db = db or get_db()
        self.clock = clock or utcnow
        self.authorizer = authorizer or default_authorizer()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_item(self, code: str, session: Optional[Session] = None) -> Item:
        """Get an item row by code.

        Args:
            code: Item barcode
            session: Session to read in; a detached copy is returned otherwise

        Returns:
            Item row

        Raises:
            NotFound: If no item has this code
        """

        def _get(s: Session) -> Item:
            item = s.get(Item, code)
            if item is None:
                raise NotFound(code)
            return item

        if session:
            return _get(session)
        with self.db.get_session() as s:
            item = _get(s)
            s.expunge(item)
            return item

    def describe(self, item: Item, now: Optional[datetime] = None) -> ItemResponse:
        """Build the caller-facing view of an item, with status evaluated at ``now``."""
        now = now or self.clock()
        status = item.status_at(now)
        due = item.due_time
        days_overdue = (now - due).days if status == ItemStatus.OVERDUE and due else 0
        return ItemResponse(
            code=item.code,
            item_type=item.item_type,
            name=item.name,
            author=item.author,
            category=item.category,
            status=status,
            current_borrower=item.current_borrower,
            due_date=due,
            days_overdue=days_overdue,
        )

    def get(self, code: str) -> ItemResponse:
        """Get the current view of an item."""
        return self.describe(self.get_item(code))

    def list_items(self) -> list[ItemResponse]:
        """List all items ordered by code."""
        with self.db.get_session() as session:
            now = self.clock()
            items = session.execute(select(Item).order_by(Item.code)).scalars().all()
            return [self.describe(item, now) for item in items]

    def items_for_borrower(self, borrower_id: str) -> list[ItemResponse]:
        """List items currently on loan to a borrower, soonest due first."""
        with self.db.get_session() as session:
            now = self.clock()
            stmt = (
                select(Item)
                .where(Item.current_borrower == borrower_id)
                .order_by(Item.due_date, Item.code)
            )
            items = session.execute(stmt).scalars().all()
            return [self.describe(item, now) for item in items]

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def set_status(
        self,
        code: str,
        new_status: Union[ItemStatus, str],
        borrower: Optional[str] = None,
        due_date: Optional[datetime] = None,
        expected_version: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> Item:
        """Write an item's status, borrower and due date.

        Args:
            code: Item barcode
            new_status: Status to set
            borrower: Borrower id (loaned statuses only)
            due_date: Due date (loaned statuses only)
            expected_version: Version the caller read; the write only applies
                              if the row still has it
            session: Session to write in (the caller's transaction)

        Returns:
            Updated item row

        Raises:
            InvalidTransition: If the combination breaks the item invariant
            NotFound: If no item has this code
            ConcurrentModification: If the row changed since ``expected_version``
        """
        new_status = ItemStatus(new_status)
        check_item_invariant(code, new_status, borrower, due_date)

        def _set(s: Session) -> Item:
            item = s.get(Item, code)
            if item is None:
                raise NotFound(code)

            version = item.version if expected_version is None else expected_version
            stmt = (
                update(Item)
                .where(Item.code == code, Item.version == version)
                .values(
                    status=new_status.value,
                    current_borrower=borrower,
                    due_date=to_iso(due_date) if due_date else None,
                    version=version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            result = s.execute(stmt)
            if result.rowcount != 1:
                raise ConcurrentModification(code)

            s.refresh(item)
            return item

        if session:
            return _set(session)
        with self.db.get_session() as s:
            item = _set(s)
            s.expunge(item)
            return item

    def register_item(self, actor_id: str, data: ItemCreate) -> ItemResponse:
        """Register a new item as available.

        Args:
            actor_id: Who is registering the item
            data: Item creation data

        Returns:
            Registered item

        Raises:
            PermissionDenied: If the actor may not create items
            ValueError: If the code is already registered
        """
        if not self.authorizer.can_perform(actor_id, Action.CREATE_ITEM):
            raise PermissionDenied(actor_id, Action.CREATE_ITEM.value)

        with self.db.get_session() as session:
            if session.get(Item, data.code) is not None:
                raise ValueError(f"Item with code '{data.code}' already exists")

            item = Item(
                code=data.code,
                item_type=data.item_type.value,
                name=data.name,
                author=data.author,
                category=data.category,
                status=ItemStatus.AVAILABLE.value,
            )
            session.add(item)
            session.flush()
            logger.info("Registered %s item %s by %s", data.item_type.value, data.code, actor_id)
            return self.describe(item)

    def change_status(
        self, actor_id: str, code: str, new_status: Union[ItemStatus, str]
    ) -> ItemResponse:
        """Move an item that is not on loan between shelf statuses.

        Used to send items to maintenance, mark them lost or retire them,
        and to put them back into circulation.

        Raises:
            PermissionDenied: If the actor may not modify items
            ValueError: If ``new_status`` is a loaned status
            ItemUnavailable: If the item is currently on loan
        """
        new_status = ItemStatus(new_status)
        if not self.authorizer.can_perform(actor_id, Action.MODIFY_ITEM):
            raise PermissionDenied(actor_id, Action.MODIFY_ITEM.value)
        if new_status.is_loaned:
            raise ValueError("Loaned statuses are set by checkout, not directly")

        with self.db.get_session() as session:
            now = self.clock()
            item = self.get_item(code, session=session)
            current = item.status_at(now)
            if current.is_loaned:
                raise ItemUnavailable(code, current.value)
            item = self.set_status(
                code, new_status, expected_version=item.version, session=session
            )
            logger.info("Item %s moved %s -> %s by %s", code, current.value, new_status.value, actor_id)
            return self.describe(item, now)

    def sync_overdue_statuses(self, show_progress: bool = False) -> int:
        """Write OVERDUE to checked-out items whose due date has passed.

        Reads already report such items as overdue; this persists it.

        Args:
            show_progress: Show a progress bar

        Returns:
            Number of items updated
        """
        updated = 0
        with self.db.get_session() as session:
            now = self.clock()
            stmt = select(Item).where(Item.status == ItemStatus.CHECKED_OUT.value)
            candidates = [
                item for item in session.execute(stmt).scalars().all()
                if item.status_at(now) == ItemStatus.OVERDUE
            ]

            for item in tqdm(candidates, desc="Marking overdue", disable=not show_progress):
                try:
                    self.set_status(
                        item.code,
                        ItemStatus.OVERDUE,
                        borrower=item.current_borrower,
                        due_date=item.due_time,
                        expected_version=item.version,
                        session=session,
                    )
                except ConcurrentModification:
                    logger.debug("Item %s changed while marking overdue; skipped", item.code)
                    continue
                updated += 1

        if updated:
            logger.info("Marked %d item(s) overdue", updated)
        return updated
