"""
# Logging Manager

Central place to configure logging and hand out component loggers.

Every module asks for its logger once at import time:

```python
from family_sync.managers.logging_manager import get_logger

logger = get_logger(prefix="[ItemStore]")
logger.info("Added item %s to family %s", item_id, family_id)
# 2026-01-01 10:00:00 INFO family_sync [ItemStore] Added item ab12 to family QX7K2P
```

The prefix is applied by a `LoggerAdapter`, so the underlying logger tree stays a plain
`logging` hierarchy rooted at `family_sync` and can be routed by any handler the host
application installs.
"""

import logging
from typing import Any, MutableMapping, Optional, Tuple

ROOT_LOGGER_NAME = "family_sync"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


class PrefixAdapter(logging.LoggerAdapter):
    """Prepends a fixed component prefix such as ``[DATABASE]`` to every message."""

    def __init__(self, logger: logging.Logger, prefix: str = ""):
        super().__init__(logger, {"prefix": prefix})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            return f"{self.prefix} {msg}", kwargs
        return msg, kwargs


def setup_logging(level: str = "INFO", fmt: Optional[str] = None, force: bool = False) -> None:
    """
    Attach a console handler to the ``family_sync`` logger tree.

    Safe to call more than once; later calls only adjust the level unless ``force`` is set.

    Args:
        level: Log level name (``DEBUG``, ``INFO``...).
        fmt: Optional format string, defaults to ``DEFAULT_FORMAT``.
        force: Replace handlers installed by an earlier call.
    """
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level.upper())

    if _configured and not force:
        return

    root.handlers.clear()
    handler = logging.StreamHandler()
    handler.setLevel(level.upper())
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str = ROOT_LOGGER_NAME, prefix: str = "") -> PrefixAdapter:
    """
    Return a prefixed logger inside the ``family_sync`` hierarchy.

    Args:
        name: Logger name; names outside the package tree are nested under it.
        prefix: Text prepended to every message, e.g. ``"[Membership]"``.
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return PrefixAdapter(logging.getLogger(name), prefix)
