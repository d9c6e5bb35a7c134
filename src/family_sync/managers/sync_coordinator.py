"""
# Sync Coordinator

Live pipeline for one client session:

```
user id ──► profile subscription ──► familyId ──► family subscription
                                              └─► item subscription (filtered to familyId)
```

## States

```
                 set_user(uid)                    family + first items snapshot
UNAUTHENTICATED ──────────────► AWAITING_FAMILY ─────────────────────────────► READY
       ▲                              │  ▲                                       │
       │ set_user(None)               │  │ profile names another family          │
       └──────────── (any) ◄──────────┘  └───────────────────────────────────────┘
                                      │ profile without familyId
                                      ▼
                                  NO_FAMILY
```

Every transition owns exactly one subscription set and cancels its predecessor before
attaching new listeners:

- `set_user` cancels everything and subscribes to the new user's profile.
- A profile snapshot with a different `familyId` cancels the family and item subscriptions
  and subscribes again. An echo with the same `familyId` changes nothing.
- A profile snapshot without `familyId` cancels the family and item subscriptions.

Callbacks capture the user and family they were created for and are dropped when they no
longer match the current session, so a late delivery can never write into torn-down state.

A family document that does not exist (yet) leaves the session in `NO_FAMILY` with its
subscriptions still attached; the session becomes `READY` if the document appears.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from family_sync.context import AppContext
from family_sync.database.document_store import Subscription
from family_sync.errors import ItemNotFound, NoActiveFamily, NotAuthenticated
from family_sync.managers.family_directory import FamilyDirectory
from family_sync.managers.item_manager import SharedItemStore
from family_sync.managers.logging_manager import get_logger
from family_sync.managers.membership_manager import MembershipResolver
from family_sync.models.family_models import Family, Item, ItemDraft, UserProfile, ViewTab
from family_sync.utils.item_views import FamilyView, build_family_view

logger = get_logger(prefix="[SyncCoordinator]")


class SyncState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_FAMILY = "awaiting_family"
    NO_FAMILY = "no_family"
    READY = "ready"


StateListener = Callable[["SyncCoordinator"], None]


class SyncCoordinator:
    """
    Session state machine wiring membership, family directory and item store together.

    Listeners registered with `add_listener` are called with the coordinator after every
    state or data change.
    """

    def __init__(
        self,
        context: AppContext,
        membership: Optional[MembershipResolver] = None,
        directory: Optional[FamilyDirectory] = None,
        items: Optional[SharedItemStore] = None,
    ):
        self.context = context
        self.directory = directory or FamilyDirectory(context)
        self.membership = membership or MembershipResolver(context, self.directory)
        self.item_store = items or SharedItemStore(context)

        self._state = SyncState.UNAUTHENTICATED
        self._user_id: Optional[str] = None
        self._family_id: Optional[str] = None
        self._family: Optional[Family] = None
        self._items: List[Item] = []
        self._items_loaded = False

        self._profile_sub: Optional[Subscription] = None
        self._family_sub: Optional[Subscription] = None
        self._items_sub: Optional[Subscription] = None

        self._listeners: List[StateListener] = []
        self.last_error: Optional[Exception] = None
        context.register_teardown(self.close)

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def family_id(self) -> Optional[str]:
        return self._family_id

    @property
    def family(self) -> Optional[Family]:
        return self._family

    @property
    def items(self) -> List[Item]:
        """Current family's items, newest first."""
        return list(self._items)

    @property
    def active_subscriptions(self) -> Dict[str, Subscription]:
        subs = {"profile": self._profile_sub, "family": self._family_sub, "items": self._items_sub}
        return {kind: sub for kind, sub in subs.items() if sub is not None and sub.active}

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _set_state(self, state: SyncState) -> None:
        if state != self._state:
            logger.info(
                "State %s -> %s (user=%s, family=%s)", self._state.value, state.value, self._user_id, self._family_id
            )
            self._state = state

    # ------------------------------------------------------------------ subscriptions

    def _cancel_family_subscriptions(self) -> None:
        for sub in (self._family_sub, self._items_sub):
            if sub is not None:
                sub.cancel()
        self._family_sub = None
        self._items_sub = None
        self._family_id = None
        self._family = None
        self._items = []
        self._items_loaded = False

    def _cancel_all(self) -> None:
        self._cancel_family_subscriptions()
        if self._profile_sub is not None:
            self._profile_sub.cancel()
        self._profile_sub = None

    def set_user(self, user_id: Optional[str]) -> None:
        """
        Switch the session to `user_id`; `None` signs out.

        Must be called from code running inside the event loop.
        """
        if user_id == self._user_id:
            return
        self._cancel_all()
        self._user_id = user_id
        self.last_error = None

        if user_id is None:
            self._set_state(SyncState.UNAUTHENTICATED)
            self._emit()
            return

        self._set_state(SyncState.AWAITING_FAMILY)
        self._profile_sub = self.membership.subscribe_profile(
            user_id,
            lambda profile: self._on_profile(user_id, profile),
            lambda error: self._on_error(user_id, None, "profile", error),
        )
        self._emit()

    def _on_profile(self, user_id: str, profile: Optional[UserProfile]) -> None:
        if user_id != self._user_id:
            return
        family_id = profile.family_id if profile is not None else None

        if not family_id:
            self._cancel_family_subscriptions()
            self._set_state(SyncState.NO_FAMILY)
            self._emit()
            return

        if family_id == self._family_id:
            return

        self._cancel_family_subscriptions()
        self._family_id = family_id
        self._set_state(SyncState.AWAITING_FAMILY)
        self._family_sub = self.directory.subscribe_family(
            family_id,
            lambda family: self._on_family(user_id, family_id, family),
            lambda error: self._on_error(user_id, family_id, "family", error),
        )
        self._items_sub = self.item_store.subscribe_family_items(
            family_id,
            lambda items: self._on_items(user_id, family_id, items),
            lambda error: self._on_error(user_id, family_id, "items", error),
        )
        logger.debug("Subscribed to family %s for user %s", family_id, user_id)
        self._emit()

    def _is_current(self, user_id: str, family_id: Optional[str]) -> bool:
        return user_id == self._user_id and family_id == self._family_id

    def _on_family(self, user_id: str, family_id: str, family: Optional[Family]) -> None:
        if not self._is_current(user_id, family_id):
            return
        self._family = family
        if family is None:
            logger.warning("Profile of %s references missing family %s", user_id, family_id)
            self._set_state(SyncState.NO_FAMILY)
        else:
            self._update_ready()
        self._emit()

    def _on_items(self, user_id: str, family_id: str, items: List[Item]) -> None:
        if not self._is_current(user_id, family_id):
            return
        self._items = items
        self._items_loaded = True
        self._update_ready()
        self._emit()

    def _update_ready(self) -> None:
        if self._family is not None and self._items_loaded:
            self._set_state(SyncState.READY)

    def _on_error(self, user_id: str, family_id: Optional[str], kind: str, error: Exception) -> None:
        if user_id != self._user_id or (family_id is not None and family_id != self._family_id):
            return
        logger.error("%s subscription failed for user %s: %s", kind, user_id, error)
        self.last_error = error
        self._emit()

    # ------------------------------------------------------------------ views

    def view(self, tab: Union[ViewTab, str] = ViewTab.DASHBOARD) -> FamilyView:
        """
        Derived view of the current family for `tab`.

        Raises:
            NoActiveFamily: If the session is not `READY`.
        """
        self._require_ready()
        return build_family_view(self._family, self._items, ViewTab(tab), self.context.settings.DASHBOARD_RECENT_LIMIT)

    # ------------------------------------------------------------------ operations

    def _require_user(self) -> str:
        if self._user_id is None:
            raise NotAuthenticated()
        return self._user_id

    def _require_ready(self) -> str:
        self._require_user()
        if self._state != SyncState.READY or self._family_id is None:
            raise NoActiveFamily(state=self._state.value)
        return self._family_id

    async def create_family(self, name: str) -> Family:
        return await self.membership.create_family(self._require_user(), name)

    async def join_family(self, code: str) -> str:
        return await self.membership.join_family(self._require_user(), code)

    async def leave_family(self) -> None:
        await self.membership.leave_family(self._require_user())

    async def add_item(self, draft: Union[ItemDraft, Dict[str, Any]]) -> str:
        family_id = self._require_ready()
        return await self.item_store.add_item(family_id, self._user_id, draft)

    async def toggle_completed(self, item_id: str, current_value: Optional[bool] = None) -> bool:
        """Flip `completed`; the current value is taken from the live view when omitted."""
        self._require_ready()
        if current_value is None:
            item = next((item for item in self._items if item.id == item_id), None)
            if item is None:
                raise ItemNotFound(f"Item {item_id} is not in the current view", item_id=item_id)
            current_value = item.completed
        return await self.item_store.toggle_completed(item_id, current_value)

    async def delete_item(self, item_id: str) -> None:
        self._require_ready()
        await self.item_store.delete_item(item_id)

    async def clear_completed(self) -> int:
        family_id = self._require_ready()
        return await self.item_store.clear_completed(family_id, self._items)

    def close(self) -> None:
        """Cancel every subscription, return to `UNAUTHENTICATED` and detach from the context."""
        self.set_user(None)
        self._listeners.clear()
        self.context.unregister_teardown(self.close)
