"""
# Family Directory

Read side of the shared family record. A family is addressed by its invite code; the
directory only reads and watches it. The one mutation (member append) belongs to
`MembershipResolver`.
"""

from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from family_sync.context import AppContext
from family_sync.database.document_store import DocumentSnapshot, ErrorCallback, Subscription
from family_sync.errors import StoreError
from family_sync.managers.logging_manager import get_logger
from family_sync.models.family_models import Family

logger = get_logger(prefix="[FamilyDirectory]")

FamilyCallback = Callable[[Optional[Family]], None]


def family_from_snapshot(snapshot: DocumentSnapshot) -> Optional[Family]:
    """`Family` for an existing document, `None` when missing."""
    if not snapshot.exists:
        return None
    return Family.from_document(snapshot.id, snapshot.data)


class FamilyDirectory:
    """Lookup and live subscription of family records."""

    def __init__(self, context: AppContext):
        self.context = context

    @property
    def store(self):
        return self.context.store

    async def get_family(self, family_id: str) -> Optional[Family]:
        """
        Read a family by invite code.

        Returns:
            Optional[Family]: The family, or `None` when no family has that code.
        """
        snapshot = await self.store.get_doc(self.context.paths.family(family_id))
        return family_from_snapshot(snapshot)

    async def get_family_snapshot(self, family_id: str) -> DocumentSnapshot:
        """Raw snapshot including the document version, for compare-and-set writers."""
        return await self.store.get_doc(self.context.paths.family(family_id))

    async def exists(self, family_id: str) -> bool:
        snapshot = await self.get_family_snapshot(family_id)
        return snapshot.exists

    def subscribe_family(
        self,
        family_id: str,
        on_change: FamilyCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Watch a family record.

        `on_change` receives the current `Family` (or `None` while the document does not
        exist) first, then again after every change.
        """
        path = self.context.paths.family(family_id)

        def _on_snapshot(snapshot: DocumentSnapshot) -> None:
            try:
                family = family_from_snapshot(snapshot)
            except (PydanticValidationError, TypeError) as e:
                logger.error("Malformed family record %s: %s", family_id, e)
                if on_error is not None:
                    on_error(StoreError(f"Malformed family record: {e}", operation="subscribe", path=path))
                return
            on_change(family)

        logger.debug("Subscribing to family %s", family_id)
        return self.store.subscribe(path, _on_snapshot, on_error)
