"""
# Document Paths

Logical path layout for one deployment. Every record lives under
`artifacts/{deploymentId}/`, which isolates deployments that share a physical store:

```
artifacts/{deploymentId}/users/{userId}/profile/main            UserProfile
artifacts/{deploymentId}/public/data/families/{familyId}        Family
artifacts/{deploymentId}/public/data/family_items/{itemId}      Item
```
"""

from family_sync.errors import ValidationError


class DocumentPaths:
    """Builds store paths scoped to a single deployment id."""

    ROOT = "artifacts"
    FAMILIES = "families"
    FAMILY_ITEMS = "family_items"

    def __init__(self, deployment_id: str):
        if not deployment_id or "/" in deployment_id:
            raise ValidationError("Deployment id must be a non-empty path segment", "deployment_id", deployment_id)
        self.deployment_id = deployment_id

    @property
    def base(self) -> str:
        return f"{self.ROOT}/{self.deployment_id}"

    def profile(self, user_id: str) -> str:
        return f"{self.base}/users/{self._segment(user_id, 'user_id')}/profile/main"

    def families(self) -> str:
        return f"{self.base}/public/data/{self.FAMILIES}"

    def family(self, family_id: str) -> str:
        return f"{self.families()}/{self._segment(family_id, 'family_id')}"

    def items(self) -> str:
        return f"{self.base}/public/data/{self.FAMILY_ITEMS}"

    def item(self, item_id: str) -> str:
        return f"{self.items()}/{self._segment(item_id, 'item_id')}"

    @staticmethod
    def _segment(value: str, field: str) -> str:
        if not value or "/" in value:
            raise ValidationError(f"{field} must be a non-empty path segment", field, value)
        return value
