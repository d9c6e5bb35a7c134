import re
from unittest.mock import AsyncMock, patch

import pytest

from family_sync.errors import (
    DocumentNotFound,
    FamilyNotFound,
    MembershipConflict,
    OrphanedFamilyError,
    StoreError,
    ValidationError,
)
from family_sync.managers.family_directory import FamilyDirectory
from family_sync.managers.membership_manager import MembershipResolver

CODE_PATTERN = re.compile(r"^[0-9A-Z]{6}$")


@pytest.fixture
def resolver(context):
    return MembershipResolver(context)


@pytest.mark.asyncio
async def test_create_family_makes_caller_only_member(resolver, context):
    family = await resolver.create_family("alice", "  Silva  ")

    stored = await FamilyDirectory(context).get_family(family.id)
    assert CODE_PATTERN.match(family.id)
    assert stored.members == ["alice"]
    assert stored.name == "Silva"
    assert stored.created_at is not None
    assert await resolver.resolve_family("alice") == family.id


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", "   ", None])
async def test_create_family_rejects_empty_name_before_store_calls(resolver, store, name):
    with patch.object(store, "set_doc", new_callable=AsyncMock) as set_doc, patch.object(
        store, "get_doc", new_callable=AsyncMock
    ) as get_doc:
        with pytest.raises(ValidationError) as exc_info:
            await resolver.create_family("alice", name)

    assert exc_info.value.field == "name"
    set_doc.assert_not_awaited()
    get_doc.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_family_regenerates_colliding_code(resolver, store, context):
    await store.set_doc(context.paths.family("AAAAAA"), {"name": "Taken", "members": ["zoe"]})

    with patch(
        "family_sync.managers.membership_manager.generate_invite_code", side_effect=["AAAAAA", "BBBBBB"]
    ) as generate:
        family = await resolver.create_family("alice", "Silva")

    assert family.id == "BBBBBB"
    assert generate.call_count == 2
    taken = await FamilyDirectory(context).get_family("AAAAAA")
    assert taken.members == ["zoe"]


@pytest.mark.asyncio
async def test_create_family_gives_up_after_max_attempts(context_factory):
    context = context_factory(INVITE_CODE_MAX_ATTEMPTS=3)
    resolver = MembershipResolver(context)
    await context.store.set_doc(context.paths.family("AAAAAA"), {"name": "Taken", "members": []})

    with patch("family_sync.managers.membership_manager.generate_invite_code", return_value="AAAAAA") as generate:
        with pytest.raises(StoreError) as exc_info:
            await resolver.create_family("alice", "Silva")

    assert exc_info.value.error_code == "INVITE_CODE_EXHAUSTED"
    assert generate.call_count == 3
    assert await resolver.resolve_family("alice") is None


@pytest.mark.asyncio
async def test_profile_write_failure_reports_orphaned_family(resolver, context):
    with patch.object(resolver, "_link_profile", AsyncMock(side_effect=StoreError("permission denied"))):
        with pytest.raises(OrphanedFamilyError) as exc_info:
            await resolver.create_family("alice", "Silva")

    family_id = exc_info.value.family_id
    orphan = await FamilyDirectory(context).get_family(family_id)
    assert orphan.members == ["alice"]
    assert isinstance(exc_info.value.__cause__, StoreError)
    assert await resolver.resolve_family("alice") is None


@pytest.mark.asyncio
async def test_orphaned_family_is_still_joinable(resolver, context):
    with patch.object(resolver, "_link_profile", AsyncMock(side_effect=StoreError("offline"))):
        with pytest.raises(OrphanedFamilyError) as exc_info:
            await resolver.create_family("alice", "Silva")

    joined = await resolver.join_family("bob", exc_info.value.family_id)

    assert await resolver.resolve_family("bob") == joined


@pytest.mark.asyncio
async def test_join_family_adds_member_once_and_links_profile(resolver, context):
    family = await resolver.create_family("alice", "Silva")

    joined = await resolver.join_family("bob", family.id)

    stored = await FamilyDirectory(context).get_family(family.id)
    assert joined == family.id
    assert stored.members == ["alice", "bob"]
    assert stored.members.count("bob") == 1
    assert await resolver.resolve_family("bob") == family.id


@pytest.mark.asyncio
async def test_join_family_canonicalises_code(resolver):
    family = await resolver.create_family("alice", "Silva")

    joined = await resolver.join_family("bob", f"  {family.id.lower()} ")

    assert joined == family.id


@pytest.mark.asyncio
async def test_join_unknown_code_leaves_profile_unchanged(resolver):
    family = await resolver.create_family("alice", "Silva")

    with pytest.raises(FamilyNotFound) as exc_info:
        await resolver.join_family("alice", "ZZZZZZ")
    with pytest.raises(FamilyNotFound):
        await resolver.join_family("bob", "zzzzzz")

    assert exc_info.value.family_id == "ZZZZZZ"
    assert await resolver.resolve_family("alice") == family.id
    assert await resolver.get_profile("bob") is None


@pytest.mark.asyncio
async def test_join_empty_code_is_validation_error(resolver, store):
    with patch.object(store, "get_doc", new_callable=AsyncMock) as get_doc:
        with pytest.raises(ValidationError):
            await resolver.join_family("bob", "   ")

    get_doc.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["QX7K2", "QX7K2PP", "AB/CD1", "QX-K2P"])
async def test_join_malformed_code_is_not_found_without_store_read(resolver, store, code):
    with patch.object(store, "get_doc", new_callable=AsyncMock) as get_doc:
        with pytest.raises(FamilyNotFound) as exc_info:
            await resolver.join_family("bob", code)

    assert exc_info.value.family_id == code.upper()
    get_doc.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejoin_does_not_duplicate_with_atomic_append(resolver, context):
    family = await resolver.create_family("alice", "Silva")

    await resolver.join_family("alice", family.id)

    stored = await FamilyDirectory(context).get_family(family.id)
    assert stored.members == ["alice"]


@pytest.mark.asyncio
async def test_leave_family_keeps_member_list(resolver, context):
    family = await resolver.create_family("alice", "Silva")
    await resolver.join_family("bob", family.id)

    await resolver.leave_family("bob")

    stored = await FamilyDirectory(context).get_family(family.id)
    assert await resolver.resolve_family("bob") is None
    assert (await resolver.get_profile("bob")).family_id is None
    assert stored.members == ["alice", "bob"]


@pytest.mark.asyncio
async def test_resolve_family_without_profile(resolver):
    assert await resolver.resolve_family("nobody") is None


def test_auto_strategy_follows_store_capability(resolver, store):
    assert resolver.append_strategy == "atomic"

    store.supports_atomic_array_union = False

    assert resolver.append_strategy == "optimistic"


def test_atomic_strategy_requires_store_support(context_factory):
    context = context_factory(MEMBER_APPEND_STRATEGY="atomic")
    context.store.supports_atomic_array_union = False
    resolver = MembershipResolver(context)

    with pytest.raises(StoreError) as exc_info:
        resolver.append_strategy

    assert exc_info.value.error_code == "UNSUPPORTED_STRATEGY"


@pytest.mark.asyncio
async def test_optimistic_append_gives_up_with_conflict(context_factory):
    context = context_factory(MEMBER_APPEND_STRATEGY="optimistic", MEMBER_APPEND_MAX_RETRIES=2)
    resolver = MembershipResolver(context)
    family = await resolver.create_family("alice", "Silva")

    with patch.object(context.store, "update_doc_if_version", AsyncMock(return_value=False)) as cas:
        with pytest.raises(MembershipConflict) as exc_info:
            await resolver.join_family("bob", family.id)

    assert cas.await_count == 2
    assert exc_info.value.attempts == 2
    assert exc_info.value.error_code == "MEMBERSHIP_CONFLICT"
    assert await resolver.get_profile("bob") is None


@pytest.mark.asyncio
async def test_family_deleted_during_join(resolver, store):
    family = await resolver.create_family("alice", "Silva")

    with patch.object(store, "update_doc", AsyncMock(side_effect=DocumentNotFound("gone", path="x"))):
        with pytest.raises(FamilyNotFound) as exc_info:
            await resolver.join_family("bob", family.id)

    assert exc_info.value.family_id == family.id
    assert await resolver.get_profile("bob") is None


@pytest.mark.asyncio
async def test_subscribe_profile_reports_changes(resolver, settle):
    received = []
    subscription = resolver.subscribe_profile("alice", received.append)
    await settle()

    family = await resolver.create_family("alice", "Silva")
    await settle()
    subscription.cancel()

    assert received[0] is None
    assert received[-1].family_id == family.id
