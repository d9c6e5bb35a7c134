from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from family_sync.errors import BatchCommitError, ItemNotFound, StoreError, ValidationError
from family_sync.managers.item_manager import SharedItemStore
from family_sync.models.family_models import ItemDraft, ItemType


@pytest.fixture
def items(context):
    return SharedItemStore(context)


async def latest_snapshot(items, settle, family_id=None):
    received = []
    if family_id is None:
        subscription = items.subscribe_items(received.append)
    else:
        subscription = items.subscribe_family_items(family_id, received.append)
    await settle()
    subscription.cancel()
    return received[-1]


@pytest.mark.asyncio
async def test_add_item_round_trip(items, settle):
    item_id = await items.add_item("FAM001", "alice", {"type": "shopping", "title": "Milk"})

    snapshot = await latest_snapshot(items, settle)

    assert len(snapshot) == 1
    item = snapshot[0]
    assert item.id == item_id
    assert item.title == "Milk"
    assert item.type == ItemType.SHOPPING
    assert item.completed is False
    assert item.family_id == "FAM001"
    assert item.created_by == "alice"
    assert item.created_at is not None


@pytest.mark.asyncio
async def test_add_item_stores_camel_case_document(items, store, context):
    item_id = await items.add_item("FAM001", "alice", ItemDraft(type="event", title=" Party ", date="2026-03-01"))

    data = (await store.get_doc(context.paths.item(item_id))).data

    assert data["familyId"] == "FAM001"
    assert data["createdBy"] == "alice"
    assert data["title"] == "Party"
    assert data["date"] == "2026-03-01"
    assert data["type"] == "event"


@pytest.mark.asyncio
async def test_draft_defaults_and_date_rules(items, settle):
    routine_id = await items.add_item("FAM001", "alice", {"title": "Dishes", "date": "2026-03-01", "details": "  "})
    education_id = await items.add_item("FAM001", "alice", {"type": "education", "title": "Exam", "date": "2026-03-02"})

    by_id = {item.id: item for item in await items.list_items()}

    assert by_id[routine_id].type == ItemType.ROUTINE
    assert by_id[routine_id].date is None
    assert by_id[routine_id].details is None
    assert by_id[education_id].date == date(2026, 3, 2)


@pytest.mark.asyncio
@pytest.mark.parametrize("title", ["", "   "])
async def test_add_item_rejects_empty_title(items, store, context, title):
    with pytest.raises(ValidationError) as exc_info:
        await items.add_item("FAM001", "alice", {"type": "shopping", "title": title})

    assert exc_info.value.field == "title"
    assert len(await store.list_docs(context.paths.items())) == 0


@pytest.mark.asyncio
async def test_add_item_rejects_unknown_type(items):
    with pytest.raises(ValidationError) as exc_info:
        await items.add_item("FAM001", "alice", {"type": "chores", "title": "Sweep"})

    assert exc_info.value.field == "type"


@pytest.mark.asyncio
async def test_snapshot_sorted_newest_first(items, settle):
    first = await items.add_item("FAM001", "alice", {"title": "t1"})
    second = await items.add_item("FAM001", "alice", {"title": "t2"})
    third = await items.add_item("FAM001", "alice", {"title": "t3"})

    snapshot = await latest_snapshot(items, settle)

    assert [item.id for item in snapshot] == [third, second, first]


@pytest.mark.asyncio
async def test_unstamped_items_sort_as_oldest(items, store, context, settle):
    stamped = await items.add_item("FAM001", "alice", {"title": "stamped"})
    await store.set_doc(context.paths.item("pending"), {"type": "routine", "title": "pending", "familyId": "FAM001"})

    snapshot = await latest_snapshot(items, settle)

    assert [item.id for item in snapshot] == [stamped, "pending"]


@pytest.mark.asyncio
async def test_subscribe_items_spans_families(items, settle):
    await items.add_item("FAM001", "alice", {"title": "ours"})
    await items.add_item("OTHER1", "zoe", {"title": "theirs"})

    everything = await latest_snapshot(items, settle)
    ours = await latest_snapshot(items, settle, family_id="FAM001")

    assert {item.title for item in everything} == {"ours", "theirs"}
    assert [item.title for item in ours] == ["ours"]


@pytest.mark.asyncio
async def test_toggle_completed(items):
    item_id = await items.add_item("FAM001", "alice", {"type": "shopping", "title": "Milk"})

    assert await items.toggle_completed(item_id, False) is True
    assert (await items.list_items())[0].completed is True
    assert await items.toggle_completed(item_id, True) is False
    assert (await items.list_items())[0].completed is False


@pytest.mark.asyncio
async def test_toggle_deleted_item_raises(items):
    item_id = await items.add_item("FAM001", "alice", {"title": "Dishes"})
    await items.delete_item(item_id)

    with pytest.raises(ItemNotFound) as exc_info:
        await items.toggle_completed(item_id, False)

    assert exc_info.value.item_id == item_id


@pytest.mark.asyncio
async def test_delete_item_twice_is_safe(items):
    item_id = await items.add_item("FAM001", "alice", {"title": "Dishes"})

    await items.delete_item(item_id)
    await items.delete_item(item_id)

    assert await items.list_items() == []


async def seed_shopping(items):
    ids = [await items.add_item("FAM001", "alice", {"type": "shopping", "title": title}) for title in ("a", "b", "c")]
    await items.toggle_completed(ids[0], False)
    await items.toggle_completed(ids[1], False)
    return ids


@pytest.mark.asyncio
async def test_clear_completed_removes_only_completed_shopping(items):
    ids = await seed_shopping(items)
    routine = await items.add_item("FAM001", "alice", {"title": "done routine"})
    await items.toggle_completed(routine, False)
    other = await items.add_item("OTHER1", "zoe", {"type": "shopping", "title": "other"})
    await items.toggle_completed(other, False)

    removed = await items.clear_completed("FAM001")

    remaining = {item.id for item in await items.list_items()}
    assert removed == 2
    assert remaining == {ids[2], routine, other}


@pytest.mark.asyncio
async def test_clear_completed_uses_supplied_view(items):
    ids = await seed_shopping(items)
    view = [item for item in await items.list_items("FAM001") if item.id == ids[0]]

    removed = await items.clear_completed("FAM001", view)

    assert removed == 1
    assert {item.id for item in await items.list_items()} == {ids[1], ids[2]}


@pytest.mark.asyncio
async def test_clear_completed_without_targets_skips_batch(items, store):
    await items.add_item("FAM001", "alice", {"type": "shopping", "title": "a"})

    with patch.object(store, "commit_batch", new_callable=AsyncMock) as commit:
        assert await items.clear_completed("FAM001") == 0

    commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_clear_completed_batch_failure_removes_nothing(items, store):
    await seed_shopping(items)

    with patch.object(store, "commit_batch", AsyncMock(side_effect=BatchCommitError("unavailable"))):
        with pytest.raises(BatchCommitError):
            await items.clear_completed("FAM001")

    assert len(await items.list_items("FAM001")) == 3


@pytest.mark.asyncio
async def test_clear_completed_wraps_store_errors(items, store):
    await seed_shopping(items)

    with patch.object(store, "commit_batch", AsyncMock(side_effect=StoreError("permission denied"))):
        with pytest.raises(BatchCommitError) as exc_info:
            await items.clear_completed("FAM001")

    assert exc_info.value.retryable is True
    assert len(exc_info.value.paths) == 2
    assert len(await items.list_items("FAM001")) == 3
