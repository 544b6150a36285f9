from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import h5py

from harmonizer.models.catalog import RunCatalog, RunHandle

_LOG = logging.getLogger(__name__)


def construct_run_path(directory: str | Path, run_number: int) -> Path:
    """Run file path inside ``directory``: run_NNNN.h5 (zero-padded to four digits)."""
    return Path(directory) / f"run_{int(run_number):04d}.h5"


@dataclass
class RunDiscovery:
    """
    Build a RunCatalog for an inclusive run range.

    Policy:
      - the source directory must exist (FileNotFoundError otherwise)
      - a run number in range without a file is skipped and warned about
      - a path that exists but is not a regular file is skipped and warned about
    """
    source_dir: Path

    def build_catalog(self, min_run: int, max_run: int) -> RunCatalog:
        src = Path(self.source_dir).expanduser().resolve()
        if not src.exists() or not src.is_dir():
            raise FileNotFoundError(f"Not a directory: {src}")
        if int(min_run) > int(max_run):
            raise ValueError(f"min_run ({min_run}) must be <= max_run ({max_run})")

        runs: List[RunHandle] = []
        warnings: List[str] = []
        for run in range(int(min_run), int(max_run) + 1):
            path = construct_run_path(src, run)
            if not path.exists():
                msg = f"run {run}: no file at {path}, skipped"
                warnings.append(msg)
                _LOG.warning(msg)
                continue
            if not path.is_file():
                msg = f"run {run}: {path} is not a regular file, skipped"
                warnings.append(msg)
                _LOG.warning(msg)
                continue
            runs.append(RunHandle(run_number=run, path=path))

        _LOG.info("Discovered %d run(s) in [%d, %d] under %s", len(runs), min_run, max_run, src)
        return RunCatalog(
            source_dir=src,
            min_run=int(min_run),
            max_run=int(max_run),
            runs=tuple(runs),
            warnings=tuple(warnings),
        )


def discover(min_run: int, max_run: int, source_dir: str | Path) -> RunCatalog:
    """Ordered catalog of the runs that exist in [min_run, max_run]."""
    return RunDiscovery(source_dir=Path(source_dir)).build_catalog(min_run, max_run)


def _event_count(path: Path) -> Optional[int]:
    with h5py.File(path, "r") as f:
        if "meta" in f:
            meta = f["meta"]["meta"][()]
            return int(meta[2]) - int(meta[0]) + 1
        if "events" in f:
            grp = f["events"]
            return int(grp.attrs["max_event"]) - int(grp.attrs["min_event"]) + 1
    return None


def count_events(catalog: RunCatalog) -> int:
    """
    Total number of events announced by the runs' index attributes.

    Used only to size progress reporting; unreadable runs count as zero here
    and are reported properly when the session actually opens them.
    """
    total = 0
    for handle in catalog:
        try:
            n = _event_count(handle.path)
        except (OSError, KeyError, IndexError, ValueError) as e:
            _LOG.debug("run %d: could not count events (%s)", handle.run_number, e)
            continue
        if n is not None and n > 0:
            total += n
    return total
