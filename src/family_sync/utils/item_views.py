"""
# Item Views

Pure functions that turn the raw item collection into what a client shows.

The item collection is shared by every family of a deployment, so every view starts with
`filter_family_items`. Ordering is newest first by `createdAt`; items the store has not
stamped yet sort as oldest.

| Tab | Shows |
|---|---|
| `dashboard` | the `DASHBOARD_RECENT_LIMIT` most recent items of any type |
| `routine` / `shopping` / `education` | items of that type |
| `calendar` | `event` items |
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from family_sync.database.document_store import QuerySnapshot
from family_sync.managers.logging_manager import get_logger
from family_sync.models.family_models import Family, Item, ItemType, ViewTab

logger = get_logger(prefix="[ItemViews]")

DEFAULT_DASHBOARD_LIMIT = 5

_TAB_ITEM_TYPES = {
    ViewTab.ROUTINE: ItemType.ROUTINE,
    ViewTab.SHOPPING: ItemType.SHOPPING,
    ViewTab.EDUCATION: ItemType.EDUCATION,
    ViewTab.CALENDAR: ItemType.EVENT,
}


def items_from_snapshot(snapshot: QuerySnapshot) -> List[Item]:
    """Parse every document of an item collection snapshot, skipping malformed records."""
    items = []
    for doc in snapshot.docs:
        if not doc.exists:
            continue
        try:
            items.append(Item.from_document(doc.id, doc.data))
        except (PydanticValidationError, TypeError) as e:
            logger.warning("Skipping malformed item %s: %s", doc.id, e)
    return items


def filter_family_items(items: Iterable[Item], family_id: str) -> List[Item]:
    return [item for item in items if item.family_id == family_id]


def sort_items(items: Iterable[Item]) -> List[Item]:
    """Newest first; unstamped items (timestamp 0) last. Stable for equal timestamps."""
    return sorted(items, key=lambda item: item.sort_timestamp, reverse=True)


def items_for_tab(items: Iterable[Item], tab: ViewTab, dashboard_limit: int = DEFAULT_DASHBOARD_LIMIT) -> List[Item]:
    """
    Select the items shown on a tab.

    Args:
        items: Items already filtered to one family and sorted.
        tab: Active tab.
        dashboard_limit: Truncation applied to the dashboard.
    """
    tab = ViewTab(tab)
    if tab == ViewTab.DASHBOARD:
        return list(items)[:dashboard_limit]
    item_type = _TAB_ITEM_TYPES[tab]
    return [item for item in items if item.type == item_type]


def completed_shopping_items(items: Iterable[Item], family_id: Optional[str] = None) -> List[Item]:
    """Shopping items marked completed, optionally restricted to one family."""
    return [
        item
        for item in items
        if item.type == ItemType.SHOPPING and item.completed and (family_id is None or item.family_id == family_id)
    ]


def has_completed_shopping(items: Iterable[Item]) -> bool:
    """Whether the clear-completed action should be offered."""
    return bool(completed_shopping_items(items))


def default_item_type_for_tab(tab: ViewTab) -> ItemType:
    """Type preselected for a new item; dashboard falls back to `routine`."""
    return _TAB_ITEM_TYPES.get(ViewTab(tab), ItemType.ROUTINE)


@dataclass
class FamilyView:
    """Everything a client renders for one tab of a family."""

    family: Family
    tab: ViewTab
    items: List[Item] = field(default_factory=list)
    show_clear_completed: bool = False
    default_item_type: ItemType = ItemType.ROUTINE

    @property
    def member_count(self) -> int:
        return self.family.member_count


def build_family_view(
    family: Family,
    items: Iterable[Item],
    tab: ViewTab = ViewTab.DASHBOARD,
    dashboard_limit: int = DEFAULT_DASHBOARD_LIMIT,
) -> FamilyView:
    """Filter, sort and select the items of `family` for `tab`."""
    tab = ViewTab(tab)
    family_items = sort_items(filter_family_items(items, family.id))
    return FamilyView(
        family=family,
        tab=tab,
        items=items_for_tab(family_items, tab, dashboard_limit),
        show_clear_completed=tab == ViewTab.SHOPPING and has_completed_shopping(family_items),
        default_item_type=default_item_type_for_tab(tab),
    )
