"""Bounded diagnostic log buffer."""
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50


class LogEntry(BaseModel):
    """A single diagnostic log line."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime
    category: str
    message: str
    is_error: bool = Field(default=False, alias="isError")


class LogBuffer:
    """Fixed-capacity, append-only ring of log entries.

    The oldest entry is evicted once ``capacity`` is reached. Entries are
    mirrored to the Python logger so they also land in the process log.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, category: str, message: str, is_error: bool = False) -> LogEntry:
        """Append an entry and mirror it to the Python logger."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc),
            category=category,
            message=message,
            is_error=is_error,
        )
        self._entries.append(entry)
        logger.log(logging.ERROR if is_error else logging.INFO, f"[{category}] {message}")
        return entry

    def entries(self) -> List[LogEntry]:
        """Snapshot of the buffer, oldest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
