from __future__ import annotations

import threading


class UniqueIdGenerator:
    """Process-wide monotonic id source.

    Ids are decimal counters rendered as strings. The counter only moves
    forward, so ids are never reused even after the entity they named is
    deleted. ``last_value`` is persisted with snapshots and handed back to
    the constructor on reload.
    """

    def __init__(self, last_value: int = 0, *, prefix: str = "") -> None:
        self._value = last_value
        self._prefix = prefix
        self._lock = threading.Lock()

    @property
    def last_value(self) -> int:
        return self._value

    def next_id(self) -> str:
        with self._lock:
            self._value += 1
            return f"{self._prefix}{self._value}"
