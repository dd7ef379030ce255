"""Fixed-capacity NumPy ring over a structured dtype.

Used for each instrument's candle history (50 bars) and each ledger's
portfolio-value samples (100). Once full, every push evicts the oldest record.
"""

from __future__ import annotations

import numpy as np

CANDLE_DTYPE = np.dtype([
    ("timestamp_ns", np.int64),
    ("open", np.float64),
    ("high", np.float64),
    ("low", np.float64),
    ("close", np.float64),
])

EQUITY_DTYPE = np.dtype([
    ("timestamp_ns", np.int64),
    ("value", np.float64),
])


class RingBuffer:
    def __init__(self, capacity: int, dtype: np.dtype = CANDLE_DTYPE) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._slots = np.zeros(capacity, dtype=dtype)
        self._next = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return len(self._slots)

    @property
    def count(self) -> int:
        return self._size

    def __len__(self) -> int:
        return self._size

    def push(self, *fields) -> None:
        """Append one record; ``fields`` follow the dtype's field order."""
        self._slots[self._next] = fields
        self._next = (self._next + 1) % self.capacity
        self._size = min(self._size + 1, self.capacity)

    def push_array(self, records: np.ndarray) -> None:
        """Append records in order; only the newest ``capacity`` are kept."""
        records = records[-self.capacity:]
        n = len(records)
        if n == 0:
            return
        idx = (self._next + np.arange(n)) % self.capacity
        self._slots[idx] = records
        self._next = (self._next + n) % self.capacity
        self._size = min(self._size + n, self.capacity)

    def latest(self) -> np.void | None:
        if self._size == 0:
            return None
        return self._slots[self._next - 1]

    def clear(self) -> None:
        self._next = 0
        self._size = 0

    def to_array(self) -> np.ndarray:
        """Oldest-first copy of the live records."""
        if self._size < self.capacity:
            return self._slots[:self._size].copy()
        return np.roll(self._slots, -self._next)

    def resized(self, capacity: int) -> RingBuffer:
        """Copy into a ring of a new capacity, keeping the newest records."""
        ring = RingBuffer(capacity, dtype=self._slots.dtype)
        ring.push_array(self.to_array())
        return ring

    def to_records(self) -> list[dict]:
        """Oldest-first records as plain Python dicts (JSON friendly)."""
        data = self.to_array()
        return [
            {name: row[name].item() for name in data.dtype.names}
            for row in data
        ]
