"""Ordered buffer of admitted frames awaiting export."""
from __future__ import annotations

from collections import deque
from typing import Deque, Iterator, Optional

from .frames import FrameCacheEntry


class FrameQueue:
    """FIFO of ``FrameCacheEntry`` with at most one entry per timestamp.

    Not thread safe. The pipeline guards every call with its own lock.
    """

    def __init__(self) -> None:
        self._elements: Deque[FrameCacheEntry] = deque()

    def enqueue(self, entry: FrameCacheEntry) -> None:
        """Append ``entry``, replacing any pending entry with the same timestamp."""
        self.remove(entry.timestamp)
        self._elements.append(entry)

    def dequeue(self) -> Optional[FrameCacheEntry]:
        """Pop the oldest entry, or None when the queue is empty."""
        if not self._elements:
            return None
        return self._elements.popleft()

    def dequeue_all(self) -> None:
        self._elements.clear()

    def remove(self, timestamp: float) -> None:
        """Drop every pending entry captured at ``timestamp``."""
        if not self._elements:
            return
        self._elements = deque(e for e in self._elements if e.timestamp != timestamp)

    def is_in_queue(self, timestamp: Optional[float]) -> bool:
        if timestamp is None or not self._elements:
            return False
        return any(e.timestamp == timestamp for e in self._elements)

    @property
    def head(self) -> Optional[FrameCacheEntry]:
        return self._elements[0] if self._elements else None

    @property
    def tail(self) -> Optional[FrameCacheEntry]:
        return self._elements[-1] if self._elements else None

    @property
    def count(self) -> int:
        return len(self._elements)

    def __len__(self) -> int:
        return len(self._elements)

    def __iter__(self) -> Iterator[FrameCacheEntry]:
        return iter(list(self._elements))
