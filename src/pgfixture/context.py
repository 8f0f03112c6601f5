"""
Run context shared between database setup and test fixtures.

Values are written once during setup and only read afterwards.
"""

import logging
import threading
from typing import Any, Dict, Iterator

from .exceptions import ContextError

logger = logging.getLogger(__name__)


class RunContext:
    """Write-once key/value hand-off for one test run."""

    def __init__(self):
        self._values: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def provide(self, key: str, value: Any) -> None:
        """Publish a value. Each key can be published once."""
        with self._lock:
            if key in self._values:
                raise ContextError(f"'{key}' has already been provided", stage="publish")
            self._values[key] = value
        logger.debug(f"Provided '{key}' to the run context")

    def inject(self, key: str) -> Any:
        """Read a published value."""
        try:
            return self._values[key]
        except KeyError:
            raise ContextError(f"'{key}' has not been provided", stage="inject") from None

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)
