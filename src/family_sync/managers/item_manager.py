"""
# Item Manager

The shared item collection: create, toggle, delete, bulk clear and live subscription.

Items of every family live in one collection (`.../public/data/family_items`) and carry
their family as the `familyId` field. The store offers no per-family partition, so
subscriptions deliver the whole collection and readers filter with
`utils.item_views.filter_family_items`.

## Consistency

- Single-item writes need only per-document ordering.
- `clear_completed` removes its targets in one atomic batch; on failure nothing is
  removed and `BatchCommitError` (retryable) is raised.
- `createdAt` is assigned by the store. Until the write is acknowledged the item sorts as
  oldest.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from family_sync.context import AppContext
from family_sync.database.document_store import BatchOperation, ErrorCallback, QuerySnapshot, Subscription
from family_sync.errors import BatchCommitError, DocumentNotFound, ItemNotFound, StoreError, ValidationError
from family_sync.managers.logging_manager import get_logger
from family_sync.models.family_models import Item, ItemDraft
from family_sync.utils.item_views import (
    completed_shopping_items,
    filter_family_items,
    items_from_snapshot,
    sort_items,
)

logger = get_logger(prefix="[ItemStore]")

ItemsCallback = Callable[[List[Item]], None]


def _coerce_draft(draft: Union[ItemDraft, Dict[str, Any]]) -> ItemDraft:
    if isinstance(draft, ItemDraft):
        return draft
    try:
        return ItemDraft(**draft)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(f"Invalid item: {first.get('msg')}", field, draft.get(field) if field else None) from e


class SharedItemStore:
    """Operations on the deployment-wide item collection."""

    def __init__(self, context: AppContext):
        self.context = context

    @property
    def store(self):
        return self.context.store

    async def add_item(self, family_id: str, user_id: str, draft: Union[ItemDraft, Dict[str, Any]]) -> str:
        """
        Create an item for `family_id`, authored by `user_id`.

        Args:
            family_id: Owning family.
            user_id: Author, stored as `createdBy`.
            draft: `ItemDraft` or a mapping with `type`, `title`, `details`, `date`.

        Returns:
            str: Store-assigned item id.

        Raises:
            ValidationError: If the title is empty or the draft is malformed; nothing is written.
        """
        draft = _coerce_draft(draft)
        if not family_id:
            raise ValidationError("Item must belong to a family", "family_id", family_id)

        document = {
            "type": draft.type.value,
            "title": draft.title,
            "details": draft.details,
            "date": draft.date.isoformat() if draft.date else None,
            "completed": False,
            "familyId": family_id,
            "createdAt": self.store.server_timestamp(),
            "createdBy": user_id,
        }
        item_id = await self.store.add_doc(self.context.paths.items(), document)
        logger.info("Added %s item %s to family %s", draft.type.value, item_id, family_id)
        return item_id

    async def toggle_completed(self, item_id: str, current_value: bool) -> bool:
        """
        Set `completed` to `not current_value`.

        Returns:
            bool: The value written.

        Raises:
            ItemNotFound: If the item was deleted meanwhile.
        """
        new_value = not current_value
        try:
            await self.store.update_doc(self.context.paths.item(item_id), {"completed": new_value})
        except DocumentNotFound as e:
            raise ItemNotFound(f"Item {item_id} no longer exists", item_id=item_id) from e
        logger.debug("Item %s completed=%s", item_id, new_value)
        return new_value

    async def delete_item(self, item_id: str) -> None:
        """Remove an item. Deleting an item that is already gone is a no-op."""
        await self.store.delete_doc(self.context.paths.item(item_id))
        logger.debug("Deleted item %s", item_id)

    async def list_items(self, family_id: Optional[str] = None) -> List[Item]:
        """One-shot read, newest first, optionally restricted to one family."""
        snapshot = await self.store.list_docs(self.context.paths.items())
        items = items_from_snapshot(snapshot)
        if family_id is not None:
            items = filter_family_items(items, family_id)
        return sort_items(items)

    async def clear_completed(self, family_id: str, items: Optional[Iterable[Item]] = None) -> int:
        """
        Delete every completed shopping item of `family_id` in one atomic batch.

        Args:
            family_id: Family whose list is cleared.
            items: Items currently in view. When omitted the collection is read first.

        Returns:
            int: Number of items removed.

        Raises:
            BatchCommitError: If the batch failed; no item was removed.
        """
        if items is None:
            items = await self.list_items(family_id)
        targets = completed_shopping_items(items, family_id)
        if not targets:
            logger.debug("No completed shopping items to clear for family %s", family_id)
            return 0

        operations = [BatchOperation.delete(self.context.paths.item(item.id)) for item in targets]
        try:
            await self.store.commit_batch(operations)
        except BatchCommitError:
            logger.error("Clearing %d completed items of family %s failed; nothing removed", len(targets), family_id)
            raise
        except StoreError as e:
            logger.error("Clearing %d completed items of family %s failed: %s", len(targets), family_id, e)
            raise BatchCommitError(f"Clear completed failed: {e}", paths=[op.path for op in operations]) from e

        logger.info("Cleared %d completed shopping items of family %s", len(targets), family_id)
        return len(targets)

    def subscribe_items(self, on_change: ItemsCallback, on_error: Optional[ErrorCallback] = None) -> Subscription:
        """
        Watch the whole item collection.

        `on_change` receives every item of every family, newest first. Callers filter by
        family.
        """

        def _on_snapshot(snapshot: QuerySnapshot) -> None:
            on_change(sort_items(items_from_snapshot(snapshot)))

        return self.store.subscribe(self.context.paths.items(), _on_snapshot, on_error)

    def subscribe_family_items(
        self,
        family_id: str,
        on_change: ItemsCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """`subscribe_items` restricted to one family."""
        return self.subscribe_items(lambda items: on_change(filter_family_items(items, family_id)), on_error)
