"""
# Membership Manager

Maps a user to at most one family through the per-user profile record and implements the
create / join / leave flows.

## Write Sequences

**create_family**
1.  Validate the name (trimmed, non-empty).
2.  Generate an invite code, regenerating while a family with that code is observed
    (bounded by `INVITE_CODE_MAX_ATTEMPTS`). The check and the write are separate, so two
    creators can still collide in the gap.
3.  Write the family `{name, members: [uid], createdAt}`.
4.  Write the profile `{familyId}`. If this fails the family is left behind without a linked
    profile and `OrphanedFamilyError` is raised; the family stays joinable by code.

**join_family**
1.  Canonicalise the code (trim, upper-case).
2.  Read the family; unknown code raises `FamilyNotFound` and leaves the profile untouched.
3.  Append the user to `members` using the configured strategy.
4.  Write the profile `{familyId}`.

**leave_family** writes `{familyId: None}`. The member list is not modified.

## Member Append Strategies

| `MEMBER_APPEND_STRATEGY` | Behaviour under concurrent joins |
|---|---|
| `atomic` | store-side `array_union`; every joiner kept, no duplicates |
| `optimistic` | versioned compare-and-set, re-read and retry; `MembershipConflict` after `MEMBER_APPEND_MAX_RETRIES` attempts |
| `read_modify_write` | legacy read / append / overwrite; concurrent joins can drop each other (lost update) |
| `auto` | `atomic` when the store supports it, otherwise `optimistic` |
"""

from typing import Callable, Optional

from family_sync.context import AppContext
from family_sync.database.document_store import DocumentSnapshot, ErrorCallback, Subscription
from family_sync.errors import (
    DocumentNotFound,
    FamilyNotFound,
    MembershipConflict,
    OrphanedFamilyError,
    StoreError,
    ValidationError,
)
from family_sync.managers.family_directory import FamilyDirectory, family_from_snapshot
from family_sync.managers.logging_manager import get_logger
from family_sync.models.family_models import Family, UserProfile
from family_sync.utils.invite_codes import generate_invite_code, is_valid_invite_code, normalize_invite_code

logger = get_logger(prefix="[Membership]")

ProfileCallback = Callable[[Optional[UserProfile]], None]

STRATEGY_ATOMIC = "atomic"
STRATEGY_OPTIMISTIC = "optimistic"
STRATEGY_READ_MODIFY_WRITE = "read_modify_write"
STRATEGY_AUTO = "auto"


class MembershipResolver:
    """
    Membership flows for the users of one deployment.

    Attributes:
        context (`AppContext`): Shared settings, store and paths.
        directory (`FamilyDirectory`): Family reads.
    """

    def __init__(self, context: AppContext, directory: Optional[FamilyDirectory] = None):
        self.context = context
        self.directory = directory or FamilyDirectory(context)

    @property
    def store(self):
        return self.context.store

    @property
    def append_strategy(self) -> str:
        """Effective member append strategy after resolving `auto`."""
        strategy = self.context.settings.MEMBER_APPEND_STRATEGY
        if strategy == STRATEGY_AUTO:
            return STRATEGY_ATOMIC if self.store.supports_atomic_array_union else STRATEGY_OPTIMISTIC
        if strategy == STRATEGY_ATOMIC and not self.store.supports_atomic_array_union:
            raise StoreError(
                "Configured store does not support atomic array union",
                operation="join_family",
                error_code="UNSUPPORTED_STRATEGY",
            )
        return strategy

    # ------------------------------------------------------------------ profile

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        snapshot = await self.store.get_doc(self.context.paths.profile(user_id))
        if not snapshot.exists:
            return None
        return UserProfile.from_document(user_id, snapshot.data)

    async def resolve_family(self, user_id: str) -> Optional[str]:
        """
        Family id linked to the user.

        Returns:
            Optional[str]: `None` when there is no profile or its `familyId` is unset.
        """
        profile = await self.get_profile(user_id)
        if profile is None:
            return None
        return profile.family_id or None

    def subscribe_profile(
        self,
        user_id: str,
        on_change: ProfileCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Watch the user's profile; `on_change` gets `None` while no profile exists."""

        def _on_snapshot(snapshot: DocumentSnapshot) -> None:
            on_change(UserProfile.from_document(user_id, snapshot.data) if snapshot.exists else None)

        return self.store.subscribe(self.context.paths.profile(user_id), _on_snapshot, on_error)

    async def _link_profile(self, user_id: str, family_id: Optional[str]) -> None:
        profile = UserProfile(user_id=user_id, family_id=family_id)
        await self.store.set_doc(self.context.paths.profile(user_id), profile.to_document())

    # ------------------------------------------------------------------ create

    async def _allocate_invite_code(self) -> str:
        settings = self.context.settings
        for attempt in range(1, settings.INVITE_CODE_MAX_ATTEMPTS + 1):
            code = generate_invite_code(settings.INVITE_CODE_LENGTH)
            if not await self.directory.exists(code):
                return code
            logger.warning("Invite code collision on attempt %d/%d", attempt, settings.INVITE_CODE_MAX_ATTEMPTS)
        raise StoreError(
            f"Could not allocate a free invite code after {settings.INVITE_CODE_MAX_ATTEMPTS} attempts",
            operation="create_family",
            error_code="INVITE_CODE_EXHAUSTED",
        )

    async def create_family(self, user_id: str, name: str) -> Family:
        """
        Create a family with the caller as its only member and link the caller's profile.

        Raises:
            ValidationError: If `name` is empty after trimming.
            OrphanedFamilyError: If the family was written but the profile link failed.
            StoreError: If the family write itself failed.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Family name cannot be empty", "name", name)

        code = await self._allocate_invite_code()
        family = Family(id=code, name=name, members=[user_id])
        document = family.to_document()
        document["createdAt"] = self.store.server_timestamp()
        await self.store.set_doc(self.context.paths.family(code), document)
        logger.info("Created family %s for user %s", code, user_id)

        try:
            await self._link_profile(user_id, code)
        except StoreError as e:
            logger.warning("Family %s created but profile link for %s failed: %s", code, user_id, e)
            raise OrphanedFamilyError(
                f"Family {code} was created but could not be linked to the profile",
                family_id=code,
                user_id=user_id,
            ) from e
        return family

    # ------------------------------------------------------------------ join

    async def join_family(self, user_id: str, code: str) -> str:
        """
        Add the caller to the family with invite code `code` and link the profile.

        Returns:
            str: The canonical family id joined.

        Raises:
            ValidationError: If the code is empty after trimming.
            FamilyNotFound: If no family has that code; the profile is unchanged.
            MembershipConflict: If the optimistic append ran out of retries.
        """
        family_id = normalize_invite_code(code)
        if not family_id:
            raise ValidationError("Invite code cannot be empty", "code", code)

        # A malformed code cannot name a family; it is never used as a store path
        if not is_valid_invite_code(family_id, self.context.settings.INVITE_CODE_LENGTH):
            logger.info("Join rejected for user %s: malformed invite code %r", user_id, family_id)
            raise FamilyNotFound(f"No family with invite code {family_id}", family_id=family_id)

        snapshot = await self.directory.get_family_snapshot(family_id)
        if not snapshot.exists:
            logger.info("Join rejected for user %s: no family with code %s", user_id, family_id)
            raise FamilyNotFound(f"No family with invite code {family_id}", family_id=family_id)

        await self._append_member(family_id, user_id, snapshot)
        await self._link_profile(user_id, family_id)
        logger.info("User %s joined family %s", user_id, family_id)
        return family_id

    async def _append_member(self, family_id: str, user_id: str, snapshot: DocumentSnapshot) -> None:
        strategy = self.append_strategy
        try:
            if strategy == STRATEGY_ATOMIC:
                await self._append_atomic(family_id, user_id)
            elif strategy == STRATEGY_OPTIMISTIC:
                await self._append_optimistic(family_id, user_id, snapshot)
            else:
                await self._append_read_modify_write(family_id, user_id, snapshot)
        except DocumentNotFound as e:
            raise FamilyNotFound(f"Family {family_id} was deleted during join", family_id=family_id) from e

    async def _append_atomic(self, family_id: str, user_id: str) -> None:
        await self.store.update_doc(
            self.context.paths.family(family_id),
            {"members": self.store.array_union(user_id)},
        )

    async def _append_optimistic(self, family_id: str, user_id: str, snapshot: DocumentSnapshot) -> None:
        max_attempts = self.context.settings.MEMBER_APPEND_MAX_RETRIES
        path = self.context.paths.family(family_id)
        for attempt in range(1, max_attempts + 1):
            family = family_from_snapshot(snapshot)
            if family is None:
                raise FamilyNotFound(f"Family {family_id} was deleted during join", family_id=family_id)
            if user_id in family.members:
                return
            if await self.store.update_doc_if_version(path, {"members": family.members + [user_id]}, snapshot.version):
                return
            logger.info("Member list of %s changed concurrently (attempt %d/%d)", family_id, attempt, max_attempts)
            snapshot = await self.directory.get_family_snapshot(family_id)

        logger.warning("Giving up adding %s to %s after %d attempts", user_id, family_id, max_attempts)
        raise MembershipConflict(
            f"Could not add user to family {family_id} after {max_attempts} attempts",
            family_id=family_id,
            user_id=user_id,
            attempts=max_attempts,
        )

    async def _append_read_modify_write(self, family_id: str, user_id: str, snapshot: DocumentSnapshot) -> None:
        # Overwrites whatever members were written since `snapshot` was read.
        members = list((snapshot.data or {}).get("members") or [])
        logger.debug("Read-modify-write append of %s to %s over %d members", user_id, family_id, len(members))
        await self.store.update_doc(self.context.paths.family(family_id), {"members": members + [user_id]})

    # ------------------------------------------------------------------ leave

    async def leave_family(self, user_id: str) -> None:
        """Unlink the caller's profile. The family's member list keeps the caller."""
        await self._link_profile(user_id, None)
        logger.info("User %s left their family", user_id)
