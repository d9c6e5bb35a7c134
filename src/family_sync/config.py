"""
# Configuration Management Module

Pydantic-based settings for the family sync core.

## Loading Hierarchy

```
┌─────────────────────────────────────────────────────────────┐
│  1. Environment variables (highest priority)                │
├─────────────────────────────────────────────────────────────┤
│  2. File named by FAMILY_SYNC_CONFIG_PATH                   │
├─────────────────────────────────────────────────────────────┤
│  3. .env file in the project root                           │
├─────────────────────────────────────────────────────────────┤
│  4. Defaults declared on `Settings` (lowest priority)       │
└─────────────────────────────────────────────────────────────┘
```

If no file is found the settings come from the environment alone.

## Configuration Groups

- **Deployment**: `DEPLOYMENT_ID` scopes every document path to `artifacts/{DEPLOYMENT_ID}/...`,
  so several deployments can share one physical store.
- **Store**: `STORE_BACKEND` selects `memory` (single process) or `mongodb`.
- **MongoDB**: URL, database, credentials, timeouts and connection retries.
- **Membership**: invite code length, collision retries and the member append strategy.
- **Views**: dashboard truncation.
- **Logging**: level and format.

## Usage

```python
from family_sync.config import Settings, settings

local = Settings(STORE_BACKEND="memory", DEPLOYMENT_ID="test-deployment")
print(settings.DEPLOYMENT_ID)
```

Components never read the module-level `settings` directly; they receive a `Settings`
instance through `AppContext`, which keeps tests free to build their own.
"""

import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "FAMILY_SYNC_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent

STORE_BACKENDS = ("memory", "mongodb")
MEMBER_APPEND_STRATEGIES = ("auto", "atomic", "optimistic", "read_modify_write")


def get_config_path() -> Optional[str]:
    """
    Determine the configuration file path.

    Checks, in order, the file named by `FAMILY_SYNC_CONFIG_PATH` and a `.env` file in the
    project root.

    Returns:
        Optional[str]: Path to the configuration file, or `None` for environment-only mode.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=False)


class Settings(BaseSettings):
    """
    Settings model for the family sync core.

    **Validation:**
    `MONGODB_URL` must not be blank, backend and strategy names must be known, and counts
    (code length, retries, dashboard limit) must be positive.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Deployment namespace
    DEPLOYMENT_ID: str = "familia-original-v1"

    # Store selection
    STORE_BACKEND: str = "memory"

    # MongoDB configuration
    MONGODB_URL: str = "mongodb://127.0.0.1:27017"
    MONGODB_DATABASE: str = "family_sync"
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_CONNECTION_RETRIES: int = 3
    MONGODB_DOCUMENTS_COLLECTION: str = "documents"
    MONGODB_REQUIRE_TRANSACTIONS: bool = True

    # Subscriptions
    SUBSCRIPTION_POLL_INTERVAL: float = 2.0

    # Membership
    INVITE_CODE_LENGTH: int = 6
    INVITE_CODE_MAX_ATTEMPTS: int = 5
    MEMBER_APPEND_STRATEGY: str = "auto"
    MEMBER_APPEND_MAX_RETRIES: int = 5

    # Views
    DASHBOARD_RECENT_LIMIT: int = 5

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s %(message)s"

    @field_validator("MONGODB_URL", "DEPLOYMENT_ID", mode="before")
    @classmethod
    def no_empty_values(cls, v: Any, info: Any) -> Any:
        """
        Reject blank connection strings and deployment ids.

        Raises:
            ValueError: If the value is empty or whitespace.
        """
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .env and not empty!")
        return str(v).strip()

    @field_validator("STORE_BACKEND", mode="before")
    @classmethod
    def validate_store_backend(cls, v: Any) -> str:
        value = str(v).strip().lower()
        if value not in STORE_BACKENDS:
            raise ValueError(f"STORE_BACKEND must be one of: {', '.join(STORE_BACKENDS)}")
        return value

    @field_validator("MEMBER_APPEND_STRATEGY", mode="before")
    @classmethod
    def validate_append_strategy(cls, v: Any) -> str:
        value = str(v).strip().lower()
        if value not in MEMBER_APPEND_STRATEGIES:
            raise ValueError(f"MEMBER_APPEND_STRATEGY must be one of: {', '.join(MEMBER_APPEND_STRATEGIES)}")
        return value

    @field_validator(
        "INVITE_CODE_LENGTH",
        "INVITE_CODE_MAX_ATTEMPTS",
        "MEMBER_APPEND_MAX_RETRIES",
        "MONGODB_CONNECTION_RETRIES",
        "DASHBOARD_RECENT_LIMIT",
        mode="before",
    )
    @classmethod
    def validate_positive_integers(cls, v: Any, info: Any) -> int:
        """
        Validates that numeric settings are positive integers.

        Raises:
            ValueError: If the value is not a positive integer.
        """
        value = int(v)
        if value <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer")
        return value

    @field_validator("SUBSCRIPTION_POLL_INTERVAL", mode="before")
    @classmethod
    def validate_poll_interval(cls, v: Any) -> float:
        interval = float(v)
        if interval <= 0 or interval > 300:
            raise ValueError("SUBSCRIPTION_POLL_INTERVAL must be between 0 and 300 seconds")
        return interval

    @property
    def mongodb_connection_string(self) -> str:
        """MongoDB URL with credentials spliced in when both are configured."""
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            password = self.MONGODB_PASSWORD.get_secret_value()
            return f"mongodb://{self.MONGODB_USERNAME}:{password}@{self.MONGODB_URL.replace('mongodb://', '')}"
        return self.MONGODB_URL


# Global settings instance
settings: Settings = Settings()
