from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Tuple


@dataclass(frozen=True)
class RunHandle:
    """
    One run file found on disk.

    run_number: merger run number (the NNNN in run_NNNN.h5).
    path: absolute path of the HDF5 file.
    """
    run_number: int
    path: Path

    @property
    def size_bytes(self) -> int:
        return int(self.path.stat().st_size)


@dataclass(frozen=True)
class RunCatalog:
    """
    Discovery output: the runs that exist within an inclusive run range.

    Notes
    - runs are ordered by ascending run number.
    - missing run numbers are not errors; each one leaves a line in warnings.
    """
    source_dir: Path
    min_run: int
    max_run: int
    runs: Tuple[RunHandle, ...]
    warnings: Tuple[str, ...] = ()

    def __iter__(self) -> Iterator[RunHandle]:
        return iter(self.runs)

    def __len__(self) -> int:
        return len(self.runs)

    @property
    def run_numbers(self) -> Tuple[int, ...]:
        return tuple(r.run_number for r in self.runs)

    @property
    def missing_runs(self) -> Tuple[int, ...]:
        present = set(self.run_numbers)
        return tuple(n for n in range(self.min_run, self.max_run + 1) if n not in present)

    def total_bytes(self) -> int:
        """On-disk size of every discovered run, for the pre-run summary."""
        return sum(r.size_bytes for r in self.runs)
