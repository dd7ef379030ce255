"""Performance Recorder: FIFO ring of total portfolio value samples."""

from __future__ import annotations

import numpy as np

from tradesim.core.data_types import PerformanceHistoryEntry
from tradesim.core.ring_buffer import EQUITY_DTYPE, RingBuffer


def _entry(row: np.void) -> PerformanceHistoryEntry:
    return PerformanceHistoryEntry(timestamp_ns=int(row["timestamp_ns"]), portfolio_value=float(row["value"]))


class PerformanceRecorder:
    def __init__(self, capacity: int = 100) -> None:
        self._buffer = RingBuffer(capacity=capacity, dtype=EQUITY_DTYPE)

    @property
    def capacity(self) -> int:
        return self._buffer.capacity

    def __len__(self) -> int:
        return self._buffer.count

    def resize(self, capacity: int) -> None:
        """Change capacity, keeping the newest samples."""
        if capacity != self._buffer.capacity:
            self._buffer = self._buffer.resized(capacity)

    def record(self, now_ns: int, total_value: float) -> None:
        self._buffer.push(now_ns, total_value)

    def load(self, entries: list[PerformanceHistoryEntry]) -> None:
        """Replace contents with persisted samples (only the newest `capacity` survive)."""
        self._buffer.clear()
        records = np.array(
            [(e.timestamp_ns, e.portfolio_value) for e in entries],
            dtype=EQUITY_DTYPE,
        )
        self._buffer.push_array(records)

    def entries(self) -> list[PerformanceHistoryEntry]:
        return [_entry(row) for row in self._buffer.to_array()]

    def latest(self) -> PerformanceHistoryEntry | None:
        row = self._buffer.latest()
        return _entry(row) if row is not None else None
