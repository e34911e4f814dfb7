"""Per-channel ring buffer of ``(t, v)`` samples.

Row 0 holds timestamps in seconds, row 1 the values.  ``write_idx`` is
the next slot to overwrite and ``count`` the number of valid samples,
so the oldest sample sits at ``(write_idx - count) % capacity``.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(slots=True)
class SampleBuffer:
    data: np.ndarray
    capacity: int
    write_idx: int = 0
    count: int = 0
    total_appended: int = 0

    @classmethod
    def empty(cls, capacity: int) -> SampleBuffer:
        capacity = max(1, int(capacity))
        return cls(data=np.zeros((2, capacity), dtype=np.float64), capacity=capacity)

    def append(self, t: float, v: float) -> None:
        self.data[0, self.write_idx] = t
        self.data[1, self.write_idx] = v
        self.write_idx = (self.write_idx + 1) % self.capacity
        self.count = min(self.capacity, self.count + 1)
        self.total_appended += 1

    def latest(self, n: int | None = None) -> np.ndarray:
        """Ordered copy (oldest first) of the newest *n* samples."""
        n = self.count if n is None else min(n, self.count)
        if n <= 0:
            return np.empty((2, 0), dtype=np.float64)
        start = (self.write_idx - n) % self.capacity
        if start + n <= self.capacity:
            return self.data[:, start : start + n].copy()
        first = self.capacity - start
        return np.concatenate((self.data[:, start:], self.data[:, : n - first]), axis=1)

    def resize(self, new_capacity: int) -> None:
        new_capacity = max(1, int(new_capacity))
        if new_capacity == self.capacity:
            return
        latest = self.latest(min(self.count, new_capacity))
        resized = np.zeros((2, new_capacity), dtype=np.float64)
        if latest.size:
            resized[:, : latest.shape[1]] = latest
        self.data = resized
        self.capacity = new_capacity
        self.write_idx = latest.shape[1] % new_capacity
        self.count = latest.shape[1]
