"""
User-facing activity log.

The controller writes entries here and never reads them back. Retention is
bounded: the newest `max_entries` entries are kept, newest first.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class ActivityKind(str, Enum):
    JOB = "job"
    ROLLBACK = "rollback"
    DECRYPT = "decrypt"
    REFRESH = "refresh"
    INFO = "info"
    ERROR = "error"


def _entry_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class ActivityEntry:
    kind: ActivityKind
    title: str
    details: str | None = None
    id: str = field(default_factory=_entry_id)
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        data = {"id": self.id, "ts": self.ts, "kind": self.kind.value, "title": self.title}
        if self.details is not None:
            data["details"] = self.details
        return data


class ActivitySink(Protocol):
    """Anything the controller can report activity to."""

    def emit(self, kind: ActivityKind | str, title: str, details: str | None = None) -> None:
        ...


class ActivityLog:
    """Bounded in-memory activity sink with change subscribers."""

    def __init__(self, max_entries: int = 50) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: deque[ActivityEntry] = deque(maxlen=max_entries)
        self._listeners: list[Callable[[ActivityEntry], Any]] = []

    def emit(self, kind: ActivityKind | str, title: str, details: str | None = None) -> ActivityEntry:
        entry = ActivityEntry(kind=ActivityKind(kind), title=title, details=details)
        # appendleft on a bounded deque drops from the right (oldest).
        self._entries.appendleft(entry)
        for listener in list(self._listeners):
            listener(entry)
        return entry

    @property
    def entries(self) -> list[ActivityEntry]:
        """Snapshot of retained entries, newest first."""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def subscribe(self, listener: Callable[[ActivityEntry], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._entries)


class NullActivitySink:
    """Discards everything."""

    def emit(self, kind: ActivityKind | str, title: str, details: str | None = None) -> None:
        return None


__all__ = [
    "ActivityKind",
    "ActivityEntry",
    "ActivitySink",
    "ActivityLog",
    "NullActivitySink",
]
