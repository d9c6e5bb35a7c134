"""
# Family Models

Pydantic models for the three record kinds kept in the document store, plus the draft
model used to create items.

## Storage Shape

Documents are stored with camelCase keys (`familyId`, `createdAt`, `createdBy`) so records
written by other clients of the same deployment stay readable. The models expose
snake_case attributes and accept either spelling on input:

```python
item = Item.from_document("a1b2", {"type": "shopping", "title": "Milk", "familyId": "QX7K2P"})
item.family_id            # "QX7K2P"
item.to_document()        # {"type": "shopping", "title": "Milk", "familyId": "QX7K2P", ...}
```

## Records

- **UserProfile**: one per user, links the user to at most one family.
- **Family**: invite code (also the id), display name and ordered member list.
- **Item**: routine / shopping / education / event entry owned by a family.
"""

from datetime import date as date_type
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ItemType(str, Enum):
    """Categories an item can belong to."""

    ROUTINE = "routine"
    SHOPPING = "shopping"
    EDUCATION = "education"
    EVENT = "event"


# Only these types carry a meaningful date
DATED_ITEM_TYPES = {ItemType.EDUCATION, ItemType.EVENT}


class ViewTab(str, Enum):
    """Presentation tabs; `calendar` lists `event` items."""

    DASHBOARD = "dashboard"
    ROUTINE = "routine"
    SHOPPING = "shopping"
    EDUCATION = "education"
    CALENDAR = "calendar"


class StoredModel(BaseModel):
    """Base for models persisted with camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the document store (aliases, no `id`)."""
        return self.model_dump(by_alias=True, exclude={"id"}, mode="python")


class UserProfile(StoredModel):
    """
    Per-user profile record.

    Stored at `artifacts/{deploymentId}/users/{userId}/profile/main`. `family_id` is `None`
    before the first create/join and after a leave; the record itself is never deleted.
    """

    user_id: str = Field(..., exclude=True)
    family_id: Optional[str] = Field(None, alias="familyId")

    @classmethod
    def from_document(cls, user_id: str, data: Optional[Dict[str, Any]]) -> "UserProfile":
        return cls(**{**(data or {}), "user_id": user_id})


class Family(StoredModel):
    """
    Shared family record, keyed by its invite code.

    `members` keeps join order. Nothing in the join flow forbids duplicates when the
    legacy read-modify-write append is used.
    """

    id: str
    name: str
    members: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    @field_validator("members", mode="before")
    @classmethod
    def missing_members_is_empty(cls, v):
        return list(v or [])

    @property
    def member_count(self) -> int:
        """Member count as displayed in the family header (never shown as zero)."""
        return len(self.members) or 1

    @classmethod
    def from_document(cls, family_id: str, data: Dict[str, Any]) -> "Family":
        return cls(**{**data, "id": family_id})


class ItemDraft(BaseModel):
    """
    Caller input for a new item.

    **Validation:**
    *   **title**: trimmed, must not be empty.
    *   **details**: trimmed, empty becomes `None`.
    *   **date**: kept only for `education` and `event` items; an empty string is `None`.
    """

    type: ItemType = ItemType.ROUTINE
    title: str
    details: Optional[str] = None
    date: Optional[date_type] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Item title cannot be empty")
        return v

    @field_validator("details", mode="before")
    @classmethod
    def validate_details(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("date", mode="before")
    @classmethod
    def blank_date_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def drop_date_for_undated_types(self):
        if self.type not in DATED_ITEM_TYPES:
            self.date = None
        return self


class Item(StoredModel):
    """
    A single actionable entry.

    Items live in one collection shared by every family of the deployment; `family_id` is a
    reference, not a structural parent, so readers must filter on it. `created_at` is `None`
    until the store has stamped the write.
    """

    id: str
    type: ItemType
    title: str
    details: Optional[str] = None
    date: Optional[date_type] = None
    completed: bool = False
    family_id: str = Field(..., alias="familyId")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    created_by: Optional[str] = Field(None, alias="createdBy")

    @field_validator("date", mode="before")
    @classmethod
    def blank_date_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def sort_timestamp(self) -> float:
        """Seconds since the epoch; unstamped items sort as oldest (0)."""
        if self.created_at is None:
            return 0.0
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return created.timestamp()

    @classmethod
    def from_document(cls, item_id: str, data: Dict[str, Any]) -> "Item":
        return cls(**{**data, "id": item_id})

    def to_document(self) -> Dict[str, Any]:
        document = super().to_document()
        document["type"] = self.type.value
        if self.date is not None:
            document["date"] = self.date.isoformat()
        return document
