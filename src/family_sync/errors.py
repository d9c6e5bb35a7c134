"""
# Family Sync Exceptions

Exception hierarchy shared by the store layer and the managers. Every error carries a
machine-readable `error_code`, a free-form `context` dictionary and the UTC time it was
raised, so callers (and logs) can tell failures apart without parsing messages.

## Taxonomy

```
FamilySyncError
├── ValidationError        precondition failed, no store call was issued
├── FamilyNotFound         join with an unknown invite code
├── ItemNotFound           toggle on an item that no longer exists
├── MembershipConflict     optimistic member append ran out of retries
├── NotAuthenticated       coordinator operation without a signed-in user
├── NoActiveFamily         coordinator operation outside the Ready state
└── StoreError             backend failure (network, permission, timeout)
    ├── DocumentNotFound   update targeted a missing document
    ├── BatchCommitError   atomic batch rejected, nothing was applied
    └── OrphanedFamilyError family written but the profile link failed
```
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class FamilySyncError(Exception):
    """Base exception with error code and context."""

    def __init__(self, message: str, error_code: str = None, context: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "FAMILY_SYNC_ERROR"
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)


class ValidationError(FamilySyncError):
    """Input rejected before any store call was made."""

    def __init__(self, message: str, field: str = None, value: Any = None):
        super().__init__(message, "VALIDATION_ERROR", {"field": field, "value": value})
        self.field = field


class FamilyNotFound(FamilySyncError):
    """No family exists with the given invite code."""

    def __init__(self, message: str, family_id: str = None):
        super().__init__(message, "FAMILY_NOT_FOUND", {"family_id": family_id})
        self.family_id = family_id


class ItemNotFound(FamilySyncError):
    """The item was deleted before the operation reached the store."""

    def __init__(self, message: str, item_id: str = None):
        super().__init__(message, "ITEM_NOT_FOUND", {"item_id": item_id})
        self.item_id = item_id


class MembershipConflict(FamilySyncError):
    """Concurrent writers kept changing the member list; the append was not applied."""

    def __init__(self, message: str, family_id: str = None, user_id: str = None, attempts: int = None):
        super().__init__(
            message,
            "MEMBERSHIP_CONFLICT",
            {"family_id": family_id, "user_id": user_id, "attempts": attempts},
        )
        self.family_id = family_id
        self.attempts = attempts


class NotAuthenticated(FamilySyncError):
    """An operation needs a user identity and none is set."""

    def __init__(self, message: str = "No authenticated user"):
        super().__init__(message, "NOT_AUTHENTICATED")


class NoActiveFamily(FamilySyncError):
    """An operation needs a resolved family and the session has none."""

    def __init__(self, message: str = "User is not linked to a family", state: str = None):
        super().__init__(message, "NO_ACTIVE_FAMILY", {"state": state})


class StoreError(FamilySyncError):
    """The document store failed to complete an operation."""

    def __init__(
        self,
        message: str,
        operation: str = None,
        path: str = None,
        error_code: str = None,
        retryable: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        merged = {"operation": operation, "path": path, "retryable": retryable}
        merged.update(context or {})
        super().__init__(message, error_code or "STORE_ERROR", merged)
        self.operation = operation
        self.path = path
        self.retryable = retryable


class DocumentNotFound(StoreError):
    """An update targeted a document that does not exist."""

    def __init__(self, message: str, path: str = None, operation: str = "update"):
        super().__init__(message, operation=operation, path=path, error_code="DOCUMENT_NOT_FOUND")


class BatchCommitError(StoreError):
    """An atomic batch failed as a whole; none of its operations were applied."""

    def __init__(self, message: str, paths: List[str] = None):
        super().__init__(
            message,
            operation="commit_batch",
            error_code="BATCH_COMMIT_FAILED",
            retryable=True,
            context={"paths": list(paths or [])},
        )
        self.paths = list(paths or [])


class OrphanedFamilyError(StoreError):
    """The family record exists but the creator's profile could not be linked to it."""

    def __init__(self, message: str, family_id: str = None, user_id: str = None):
        super().__init__(
            message,
            operation="create_family",
            error_code="ORPHANED_FAMILY",
            context={"family_id": family_id, "user_id": user_id},
        )
        self.family_id = family_id
