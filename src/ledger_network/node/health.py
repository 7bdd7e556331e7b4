"""
Per-node backoff state.

A node is healthy once its readmit time has passed. Every failure pushes the
readmit time out by the current backoff and doubles the backoff (capped at
the maximum); every success halves it back toward the minimum.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass
class NodeHealth:
    """Tracks backoff for a single node.

    Mutated only through ``increase_backoff``/``decrease_backoff`` and the
    bound setters, all of which hold the instance lock, so concurrent
    requests sharing a node never lose an update.
    """

    min_backoff: float = 8.0
    max_backoff: float = 3600.0
    current_backoff: float = -1.0
    bad_attempt_count: int = 0
    last_failure_time: float = 0.0
    readmit_time: float = 0.0
    clock: Callable[[], float] = field(default=time.time, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.min_backoff > self.max_backoff:
            raise ValueError("min_backoff must not exceed max_backoff")
        if self.current_backoff < 0:
            self.current_backoff = self.min_backoff
        self.current_backoff = max(self.min_backoff, min(self.current_backoff, self.max_backoff))

    def increase_backoff(self) -> None:
        with self._lock:
            now = self.clock()
            self.bad_attempt_count += 1
            self.last_failure_time = now
            self.readmit_time = now + self.current_backoff
            self.current_backoff = min(self.current_backoff * 2, self.max_backoff)

    def decrease_backoff(self) -> None:
        with self._lock:
            self.current_backoff = max(self.current_backoff / 2, self.min_backoff)

    def is_healthy(self) -> bool:
        with self._lock:
            return self.clock() >= self.readmit_time

    def remaining_backoff(self) -> float:
        """Seconds until the node is readmitted, zero if already healthy."""
        with self._lock:
            return max(0.0, self.readmit_time - self.clock())

    def set_min_backoff(self, backoff: float) -> None:
        with self._lock:
            if backoff > self.max_backoff:
                raise ValueError("min_backoff must not exceed max_backoff")
            if self.current_backoff == self.min_backoff or self.current_backoff < backoff:
                self.current_backoff = backoff
            self.min_backoff = backoff

    def set_max_backoff(self, backoff: float) -> None:
        with self._lock:
            if backoff < self.min_backoff:
                raise ValueError("max_backoff must not be below min_backoff")
            self.max_backoff = backoff
            self.current_backoff = min(self.current_backoff, backoff)

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "min_backoff": self.min_backoff,
                "max_backoff": self.max_backoff,
                "current_backoff": self.current_backoff,
                "bad_attempt_count": self.bad_attempt_count,
                "last_failure_time": self.last_failure_time,
                "readmit_time": self.readmit_time,
            }
