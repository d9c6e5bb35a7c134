from datetime import datetime, timedelta, timezone

import pytest

from family_sync.database.document_store import DocumentSnapshot, QuerySnapshot
from family_sync.models.family_models import Family, Item, ItemType, ViewTab
from family_sync.utils.item_views import (
    build_family_view,
    completed_shopping_items,
    default_item_type_for_tab,
    filter_family_items,
    has_completed_shopping,
    items_for_tab,
    items_from_snapshot,
    sort_items,
)

BASE = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_item(item_id, item_type=ItemType.ROUTINE, minutes=None, family_id="FAM001", completed=False):
    return Item(
        id=item_id,
        type=item_type,
        title=f"Item {item_id}",
        family_id=family_id,
        completed=completed,
        created_at=BASE + timedelta(minutes=minutes) if minutes is not None else None,
        created_by="u1",
    )


def test_sort_newest_first_with_unstamped_last():
    items = [make_item("t1", minutes=1), make_item("pending"), make_item("t3", minutes=3), make_item("t2", minutes=2)]

    assert [item.id for item in sort_items(items)] == ["t3", "t2", "t1", "pending"]


def test_naive_timestamps_are_treated_as_utc():
    naive = Item(id="n", type="routine", title="x", familyId="F", createdAt=datetime(2026, 1, 1, 0, 1))
    aware = make_item("a", minutes=0)

    assert [item.id for item in sort_items([aware, naive])] == ["n", "a"]


def test_filter_family_items():
    items = [make_item("a"), make_item("b", family_id="OTHER1"), make_item("c")]

    assert [item.id for item in filter_family_items(items, "FAM001")] == ["a", "c"]


def test_dashboard_truncates_to_limit():
    items = sort_items(make_item(str(i), minutes=i) for i in range(8))

    assert [item.id for item in items_for_tab(items, ViewTab.DASHBOARD)] == ["7", "6", "5", "4", "3"]
    assert len(items_for_tab(items, ViewTab.DASHBOARD, dashboard_limit=2)) == 2


@pytest.mark.parametrize(
    "tab, expected",
    [
        (ViewTab.ROUTINE, ["r"]),
        (ViewTab.SHOPPING, ["s"]),
        (ViewTab.EDUCATION, ["e"]),
        (ViewTab.CALENDAR, ["v"]),
        ("calendar", ["v"]),
    ],
)
def test_items_for_tab(tab, expected):
    items = [
        make_item("r", ItemType.ROUTINE),
        make_item("s", ItemType.SHOPPING),
        make_item("e", ItemType.EDUCATION),
        make_item("v", ItemType.EVENT),
    ]

    assert [item.id for item in items_for_tab(items, tab)] == expected


def test_completed_shopping_detection():
    items = [
        make_item("s1", ItemType.SHOPPING, completed=True),
        make_item("s2", ItemType.SHOPPING),
        make_item("r1", ItemType.ROUTINE, completed=True),
        make_item("s3", ItemType.SHOPPING, completed=True, family_id="OTHER1"),
    ]

    assert has_completed_shopping(items)
    assert not has_completed_shopping(items[1:3])
    assert [item.id for item in completed_shopping_items(items, "FAM001")] == ["s1"]


@pytest.mark.parametrize(
    "tab, expected",
    [
        (ViewTab.DASHBOARD, ItemType.ROUTINE),
        (ViewTab.ROUTINE, ItemType.ROUTINE),
        (ViewTab.SHOPPING, ItemType.SHOPPING),
        (ViewTab.EDUCATION, ItemType.EDUCATION),
        (ViewTab.CALENDAR, ItemType.EVENT),
    ],
)
def test_default_item_type_for_tab(tab, expected):
    assert default_item_type_for_tab(tab) == expected


def test_build_family_view():
    family = Family(id="FAM001", name="Silva", members=["u1", "u2"])
    items = [
        make_item("s1", ItemType.SHOPPING, minutes=1, completed=True),
        make_item("s2", ItemType.SHOPPING, minutes=2),
        make_item("x", ItemType.SHOPPING, minutes=3, family_id="OTHER1", completed=True),
    ]

    shopping = build_family_view(family, items, ViewTab.SHOPPING)
    dashboard = build_family_view(family, items)

    assert [item.id for item in shopping.items] == ["s2", "s1"]
    assert shopping.show_clear_completed is True
    assert shopping.default_item_type == ItemType.SHOPPING
    assert shopping.member_count == 2
    assert dashboard.show_clear_completed is False
    assert dashboard.tab == ViewTab.DASHBOARD


def test_member_count_is_never_zero():
    assert Family(id="FAM001", name="Silva", members=None).member_count == 1


def test_items_from_snapshot_skips_malformed_documents():
    snapshot = QuerySnapshot(
        path="artifacts/t/public/data/family_items",
        docs=[
            DocumentSnapshot("artifacts/t/public/data/family_items/ok", {"type": "routine", "title": "a", "familyId": "F"}),
            DocumentSnapshot("artifacts/t/public/data/family_items/bad", {"type": "chores", "title": "b"}),
        ],
    )

    assert [item.id for item in items_from_snapshot(snapshot)] == ["ok"]


def test_item_document_uses_camel_case_keys():
    item = Item.from_document(
        "a1", {"type": "event", "title": "Party", "date": "2026-02-01", "familyId": "FAM001", "createdBy": "u1"}
    )

    document = item.to_document()

    assert "id" not in document
    assert document["type"] == "event"
    assert document["date"] == "2026-02-01"
    assert document["familyId"] == "FAM001"
    assert document["createdBy"] == "u1"
    assert document["completed"] is False


def test_stored_id_field_is_ignored_in_favour_of_document_id():
    snapshot = QuerySnapshot(
        path="artifacts/t/public/data/family_items",
        docs=[
            DocumentSnapshot(
                "artifacts/t/public/data/family_items/real",
                {"id": "stale", "type": "shopping", "title": "Milk", "familyId": "OTHER0"},
            ),
            DocumentSnapshot("artifacts/t/public/data/family_items/ok", {"type": "routine", "title": "a", "familyId": "F"}),
        ],
    )

    assert [item.id for item in items_from_snapshot(snapshot)] == ["real", "ok"]


def test_items_from_snapshot_skips_documents_with_unusable_keys():
    snapshot = QuerySnapshot(
        path="artifacts/t/public/data/family_items",
        docs=[
            DocumentSnapshot("artifacts/t/public/data/family_items/odd", {"type": "routine", "title": "a", "familyId": "F", 7: "x"}),
            DocumentSnapshot("artifacts/t/public/data/family_items/ok", {"type": "routine", "title": "b", "familyId": "F"}),
        ],
    )

    assert [item.id for item in items_from_snapshot(snapshot)] == ["ok"]


def test_family_document_with_stored_id():
    family = Family.from_document("QX7K2P", {"id": "OLD000", "name": "Silva", "members": ["u1"]})

    assert family.id == "QX7K2P"
    assert family.members == ["u1"]
