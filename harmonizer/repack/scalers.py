"""Scaler consolidation.

All scaler readouts of every processed run are collected into one table and
written once, as ``scalers.parquet`` in the harmonic directory. The table is
independent of how events were split into harmonic runs; the ``run`` and
``timestamp`` columns identify where each row came from.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from harmonizer.errors import OutputIOError, WriteConflictError
from harmonizer.models.events import SCALER_CHANNELS, ScalerRecord

_LOG = logging.getLogger(__name__)

SCALER_FILE_NAME = "scalers.parquet"
SCALER_COLUMNS = ("run", "event", "timestamp") + SCALER_CHANNELS

_COLUMN_DTYPES: Dict[str, str] = {"run": "int32", "event": "uint32", "timestamp": "uint64"}
_COLUMN_DTYPES.update({name: "uint32" for name in SCALER_CHANNELS})


class ScalerAggregator:
    """
    Session-wide accumulation of scaler readouts.

    Parameters
    ----------
    harmonic_path:
        Destination directory (must exist when :meth:`finalize` runs).
    overwrite:
        If False, an existing ``scalers.parquet`` is a WriteConflictError.
    file_name:
        Name of the consolidated table inside ``harmonic_path``.
    """

    def __init__(self, harmonic_path: str | Path, *, overwrite: bool = False, file_name: str = SCALER_FILE_NAME) -> None:
        self.harmonic_path = Path(harmonic_path)
        self.overwrite = bool(overwrite)
        self.file_name = file_name
        self._columns: Dict[str, List[int]] = {c: [] for c in SCALER_COLUMNS}
        self._runs_seen: List[int] = []
        self._finalized = False

    @property
    def path(self) -> Path:
        return self.harmonic_path / self.file_name

    def __len__(self) -> int:
        return len(self._columns["run"])

    def accept(self, record: ScalerRecord, source_run_number: Optional[int] = None) -> None:
        """Append one readout. ``source_run_number`` defaults to the record's own run."""
        if self._finalized:
            raise RuntimeError("scaler table already written; no more records can be accepted")
        run = int(record.run_number if source_run_number is None else source_run_number)
        if len(record.values) != len(SCALER_CHANNELS):
            raise ValueError(
                f"run {run} scaler {record.event}: expected {len(SCALER_CHANNELS)} channels, got {len(record.values)}"
            )
        if not self._runs_seen or self._runs_seen[-1] != run:
            self._runs_seen.append(run)
        self._columns["run"].append(run)
        self._columns["event"].append(int(record.event))
        self._columns["timestamp"].append(int(record.timestamp))
        for name, value in zip(SCALER_CHANNELS, record.values):
            self._columns[name].append(int(value))

    def to_frame(self) -> pd.DataFrame:
        """Accumulated rows, ordered by (run, timestamp) with ties kept in arrival order."""
        df = pd.DataFrame({c: np.asarray(self._columns[c], dtype=_COLUMN_DTYPES[c]) for c in SCALER_COLUMNS})
        return df.sort_values(["run", "timestamp"], kind="stable").reset_index(drop=True)

    def finalize(self) -> Path:
        """Write the consolidated table. Can only be called once."""
        if self._finalized:
            raise RuntimeError(f"scaler table already written to {self.path}")
        out = self.path
        if not self.harmonic_path.is_dir():
            raise OutputIOError(f"Harmonic path {self.harmonic_path} does not exist")
        if out.exists() and not self.overwrite:
            raise WriteConflictError(f"Scaler table {out} already exists (set overwrite to replace it)")

        df = self.to_frame()
        try:
            df.to_parquet(out, index=False, engine="pyarrow")
        except OSError as e:
            raise OutputIOError(f"could not write scaler table {out}: {e}") from e
        self._finalized = True
        _LOG.info("wrote %d scaler row(s) from %d run(s) to %s", len(df), len(set(self._runs_seen)), out)
        return out
