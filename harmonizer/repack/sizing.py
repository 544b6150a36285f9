from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

import numpy as np

from harmonizer.models.events import MergerEvent

# orig_run (int32) + orig_event (uint64), stamped on every copied event.
PROVENANCE_BYTES = np.dtype(np.int32).itemsize + np.dtype(np.uint64).itemsize


def _attr_nbytes(value: Any) -> int:
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    if isinstance(value, bytes):
        return len(value)
    return int(np.asarray(value).nbytes)


def _attrs_nbytes(values: Iterable[Any]) -> int:
    return sum(_attr_nbytes(v) for v in values)


@dataclass
class SizeAccountant:
    """
    Logical byte cost of events, and the running total of the open segment.

    The cost is the in-memory payload size (``ndarray.nbytes``) of every
    dataset in the event plus, when ``include_attributes`` is set, the value
    size of every attribute copied with it and of the provenance attributes.
    HDF5 chunking, compression and metadata overhead are deliberately not
    looked at: the same event always costs the same number of bytes.
    """
    include_attributes: bool = True
    running_total: int = field(default=0, init=False)

    def size_of(self, event: MergerEvent) -> int:
        total = 0
        if event.get is not None:
            total += int(event.get.traces.nbytes)
            if self.include_attributes:
                total += _attrs_nbytes(event.get.attrs.values())
        if event.frib is not None:
            total += sum(int(np.asarray(a).nbytes) for a in event.frib.channels.values())
            if self.include_attributes:
                total += _attrs_nbytes(event.frib.attrs.values())
                for attrs in event.frib.channel_attrs.values():
                    total += _attrs_nbytes(attrs.values())
        if self.include_attributes:
            total += PROVENANCE_BYTES
        return total

    def place(self, nbytes: int) -> int:
        """Add an accepted event to the open segment; returns the new total."""
        if nbytes < 0:
            raise ValueError(f"event size must be >= 0, got {nbytes}")
        self.running_total += int(nbytes)
        return self.running_total

    def reset(self) -> None:
        self.running_total = 0

    def fits(self, nbytes: int, budget: int) -> bool:
        return self.running_total + int(nbytes) <= int(budget)
