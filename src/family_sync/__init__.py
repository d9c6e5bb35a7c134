"""
# Family Sync

Realtime membership and shared item synchronization for household organizers.

A small group of users (a *family*) shares one list of routine tasks, shopping items,
education entries and calendar events. Users join with a six-character invite code and
every connected client sees the same live list.

## Components

- **`context.AppContext`**: process-wide settings, store and teardown registry.
- **`managers.membership_manager.MembershipResolver`**: create / join / leave.
- **`managers.family_directory.FamilyDirectory`**: family lookup and subscription.
- **`managers.item_manager.SharedItemStore`**: item writes, bulk clear, subscription.
- **`managers.sync_coordinator.SyncCoordinator`**: per-session state machine.
- **`database`**: the document store contract with in-memory and MongoDB backends.

## Quick Start

```python
from family_sync import AppContext, Settings
from family_sync.managers.sync_coordinator import SyncCoordinator

async with AppContext(Settings(STORE_BACKEND="memory")) as context:
    session = SyncCoordinator(context)
    session.set_user("uid-1")
    await session.create_family("Silva")
```
"""

from family_sync.config import Settings, settings
from family_sync.context import AppContext

__version__ = "0.1.0"

__all__ = ["AppContext", "Settings", "settings", "__version__"]
