"""Record models for profiles, families and items."""

from family_sync.models.family_models import (
    DATED_ITEM_TYPES,
    Family,
    Item,
    ItemDraft,
    ItemType,
    UserProfile,
    ViewTab,
)

__all__ = [
    "DATED_ITEM_TYPES",
    "Family",
    "Item",
    "ItemDraft",
    "ItemType",
    "UserProfile",
    "ViewTab",
]
