"""Fixtures writing small synthetic merger runs (modern and legacy layouts)."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

import h5py
import numpy as np
import pytest

from harmonizer.ingest.discovery import construct_run_path
from harmonizer.models.config import HarmonizerConfig


def _trace_attrs(run_number: int, n: int):
    return {
        "id": np.uint32(n),
        "timestamp": np.uint64(1_000_000 * run_number + 10 * n),
        "timestamp_other": np.uint64(1_000_000 * run_number + 10 * n + 1),
    }


def _scaler_values(run_number: int, n: int) -> np.ndarray:
    return np.arange(11, dtype=np.uint32) + np.uint32(100 * run_number + n)


def write_modern_run(
    path: Path,
    run_number: int,
    traces: Sequence[Optional[np.ndarray]],
    *,
    frib: bool = False,
    n_scalers: int = 0,
    with_scalers: bool = True,
) -> Path:
    """One event per entry in ``traces`` (None = event without get_traces)."""
    with h5py.File(path, "w") as f:
        events = f.create_group("events")
        events.attrs["min_event"] = np.int64(0)
        events.attrs["max_event"] = np.int64(len(traces) - 1)
        events.attrs["version"] = "attpc_merger:0.2.0"
        for n, tr in enumerate(traces):
            grp = events.create_group(f"event_{n}")
            if tr is not None:
                ds = grp.create_dataset("get_traces", data=tr)
                for k, v in _trace_attrs(run_number, n).items():
                    ds.attrs[k] = v
            if frib:
                fg = grp.create_group("frib_physics")
                fg.attrs["event"] = np.uint32(n)
                fg.attrs["timestamp"] = np.uint32(500 + n)
                fg.create_dataset("977", data=np.array([n, n + 1], dtype=np.uint16))
                fg.create_dataset("1903", data=np.full((2, 3), n, dtype=np.uint16))
        if with_scalers:
            sg = f.create_group("scalers")
            sg.attrs["min_event"] = np.int64(0)
            sg.attrs["max_event"] = np.int64(n_scalers - 1)
            for n in range(n_scalers):
                ds = sg.create_dataset(f"event_{n}", data=_scaler_values(run_number, n))
                ds.attrs["timestamp"] = np.uint64(1_000_000 * run_number + 1000 * n)
    return path


def write_legacy_run(
    path: Path,
    run_number: int,
    traces: Sequence[Optional[np.ndarray]],
    *,
    frib: bool = False,
    n_scalers: int = 0,
) -> Path:
    """Same content as write_modern_run, in the merger 0.1 layout."""
    with h5py.File(path, "w") as f:
        meta = f.create_group("meta")
        meta.create_dataset("meta", data=np.array([0, 0, len(traces) - 1, 0], dtype=np.float64))
        get = f.create_group("get")
        frib_grp = f.create_group("frib")
        evt = frib_grp.create_group("evt")
        scaler = frib_grp.create_group("scaler")
        for n, tr in enumerate(traces):
            if tr is not None:
                get.create_dataset(f"evt{n}_data", data=tr)
                a = _trace_attrs(run_number, n)
                get.create_dataset(
                    f"evt{n}_header",
                    data=np.array([a["id"], a["timestamp"], a["timestamp_other"]], dtype=np.float64),
                )
            if frib:
                evt.create_dataset(f"evt{n}_977", data=np.array([n, n + 1], dtype=np.uint16))
                evt.create_dataset(f"evt{n}_1903", data=np.full((2, 3), n, dtype=np.uint16))
                evt.create_dataset(f"evt{n}_header", data=np.array([n, 500 + n], dtype=np.uint32))
        for n in range(n_scalers):
            scaler.create_dataset(f"scaler{n}_data", data=_scaler_values(run_number, n))
    return path


def four_byte_trace(value: int = 0) -> np.ndarray:
    """A (1, 2) int16 trace: exactly 4 bytes of payload."""
    return np.array([[value, value + 1]], dtype=np.int16)


@pytest.fixture
def merger_dir(tmp_path: Path) -> Path:
    d = tmp_path / "merger"
    d.mkdir()
    return d


@pytest.fixture
def harmonic_dir(tmp_path: Path) -> Path:
    d = tmp_path / "harmonic"
    d.mkdir()
    return d


@pytest.fixture
def write_run(merger_dir: Path):
    """write_run(run_number, traces, legacy=False, **kw) -> path of run_NNNN.h5 in merger_dir."""

    def _write(run_number: int, traces, *, legacy: bool = False, **kw) -> Path:
        path = construct_run_path(merger_dir, run_number)
        if legacy:
            return write_legacy_run(path, run_number, traces, **kw)
        return write_modern_run(path, run_number, traces, **kw)

    return _write


@pytest.fixture
def make_config(merger_dir: Path, harmonic_dir: Path):
    """make_config(min_run, max_run, size_bytes, **overrides) -> HarmonizerConfig."""

    def _make(min_run: int, max_run: int, size_bytes: int, **overrides) -> HarmonizerConfig:
        return HarmonizerConfig(
            merger_path=merger_dir,
            harmonic_path=harmonic_dir,
            harmonic_size_gb=size_bytes / 1e9,
            min_run=min_run,
            max_run=max_run,
            **overrides,
        )

    return _make
