"""End-to-end sessions: catalog -> reader -> writer/aggregator."""

from __future__ import annotations

from dataclasses import replace

import h5py
import numpy as np
import pandas as pd
import pytest

from harmonizer.errors import ConfigError, RunFormatError, WriteConflictError
from harmonizer.ingest.discovery import construct_run_path
from harmonizer.ingest.reader import RunReader
from harmonizer.repack.orchestrator import harmonize
from harmonizer.repack.scalers import SCALER_FILE_NAME
from harmonizer.repack.sizing import SizeAccountant
from conftest import four_byte_trace


def _harmonic_contents(report):
    """[(number, [(orig_run, orig_event), ...]), ...] read back from disk."""
    out = []
    for seg in report.segments:
        with h5py.File(seg.path, "r") as f:
            events = f["events"]
            lo, hi = int(events.attrs["min_event"]), int(events.attrs["max_event"])
            origins = [
                (int(events[f"event_{i}"].attrs["orig_run"]), int(events[f"event_{i}"].attrs["orig_event"]))
                for i in range(lo, hi + 1)
            ]
        out.append((seg.number, origins))
    return out


def _varied_runs(write_run, rng):
    """Runs 1..6 without run 4, uneven event counts and sizes."""
    expected = []
    n_scalers = 0
    for run, n_events in ((1, 7), (2, 1), (3, 12), (5, 0), (6, 5)):
        traces = [
            np.zeros((int(rng.integers(1, 6)), 4), dtype=np.int16)
            for _ in range(n_events)
        ]
        legacy = run == 3
        write_run(run, traces, frib=True, n_scalers=run, legacy=legacy)
        expected.extend((run, n) for n in range(n_events))
        n_scalers += run
    return expected, n_scalers


class TestSpecExamples:
    def test_example_a(self, write_run, make_config):
        write_run(55, [four_byte_trace(), four_byte_trace()])
        write_run(56, [four_byte_trace()])
        write_run(57, [four_byte_trace()])

        report = harmonize(make_config(55, 57, 8), accountant=SizeAccountant(include_attributes=False))

        assert _harmonic_contents(report) == [
            (1, [(55, 0), (55, 1)]),
            (2, [(56, 0), (57, 0)]),
        ]
        assert report.n_events == 4

    def test_example_b(self, write_run, make_config):
        write_run(1, [np.zeros((1, 10), dtype=np.int16)])  # 20 bytes
        write_run(2, [four_byte_trace(), four_byte_trace()])

        report = harmonize(make_config(1, 2, 8), accountant=SizeAccountant(include_attributes=False))

        assert _harmonic_contents(report) == [
            (1, [(1, 0)]),
            (2, [(2, 0), (2, 1)]),
        ]

    def test_example_c(self, write_run, make_config):
        write_run(60, [four_byte_trace()], n_scalers=2)
        write_run(62, [four_byte_trace()], n_scalers=3)

        report = harmonize(make_config(60, 62, 1000))

        assert report.catalog.run_numbers == (60, 62)
        assert len(report.warnings) == 1 and "run 61" in report.warnings[0]
        assert _harmonic_contents(report) == [(1, [(60, 0), (62, 0)])]
        df = pd.read_parquet(report.scaler_path)
        assert sorted(set(df["run"])) == [60, 62]
        assert len(df) == 5


class TestInvariants:
    @pytest.fixture
    def session(self, write_run, make_config):
        expected, n_scalers = _varied_runs(write_run, np.random.default_rng(7))
        budget = 300
        report = harmonize(make_config(1, 6, budget))
        return report, expected, n_scalers, budget

    def test_bijection_and_order(self, session):
        report, expected, _, _ = session
        copied = [o for _, origins in _harmonic_contents(report) for o in origins]
        assert copied == expected
        assert len(set(copied)) == len(copied)
        assert report.n_events == len(expected)

    def test_contiguous_numbers(self, session):
        report, _, _, _ = session
        numbers = [s.number for s in report.segments]
        assert numbers == list(range(1, len(numbers) + 1))
        assert len(numbers) > 1
        assert [p.name for p in sorted(report.segments[0].path.parent.glob("run_*.h5"))] == [
            f"run_{n:04d}.h5" for n in numbers
        ]

    def test_budget_respected(self, session):
        report, _, _, budget = session
        for seg in report.segments:
            assert seg.n_bytes <= budget or seg.n_events == 1

    def test_scaler_completeness(self, session):
        report, _, n_scalers, _ = session
        df = pd.read_parquet(report.scaler_path)
        assert len(df) == n_scalers == report.n_scalers
        assert df.groupby("run").size().to_dict() == {1: 1, 2: 2, 3: 3, 5: 5, 6: 6}

    def test_outputs_are_readable_runs(self, session):
        report, _, _, _ = session
        seg = report.segments[0]
        with RunReader.open(seg.number, seg.path) as reader:
            events = list(reader.events())
            assert list(reader.scalers()) == []
        assert len(events) == seg.n_events
        assert events[0].get is not None and events[0].frib is not None


def test_deterministic(tmp_path, write_run, make_config):
    _varied_runs(write_run, np.random.default_rng(3))
    base = make_config(1, 6, 250)

    reports = []
    for name in ("a", "b"):
        dest = tmp_path / name
        dest.mkdir()
        reports.append(harmonize(replace(base, harmonic_path=dest)))

    a, b = reports
    assert _harmonic_contents(a) == _harmonic_contents(b)
    pd.testing.assert_frame_equal(pd.read_parquet(a.scaler_path), pd.read_parquet(b.scaler_path))


class TestFailures:
    def test_format_error_aborts_session(self, write_run, make_config, harmonic_dir):
        write_run(1, [four_byte_trace()] * 3, n_scalers=1)
        bad = write_run(2, [four_byte_trace()] * 2)
        with h5py.File(bad, "a") as f:
            del f["events"]["event_1"]["get_traces"].attrs["id"]

        with pytest.raises(RunFormatError) as ei:
            harmonize(make_config(1, 2, 1000))

        assert ei.value.run_number == 2
        assert not (harmonic_dir / SCALER_FILE_NAME).exists()
        # Segment handle released even though the session failed.
        with h5py.File(construct_run_path(harmonic_dir, 1), "a"):
            pass

    def test_missing_destination(self, write_run, make_config, harmonic_dir):
        write_run(1, [four_byte_trace()])
        cfg = replace(make_config(1, 1, 8), harmonic_path=harmonic_dir / "missing")
        with pytest.raises(ConfigError):
            harmonize(cfg)

    def test_rerun_into_populated_destination(self, write_run, make_config):
        write_run(1, [four_byte_trace()])
        cfg = make_config(1, 1, 8)
        harmonize(cfg)

        with pytest.raises(WriteConflictError):
            harmonize(cfg)

        report = harmonize(replace(cfg, overwrite=True))
        assert report.n_events == 1

    def test_shorter_rerun_leaves_no_old_runs(self, write_run, make_config, harmonic_dir):
        write_run(1, [four_byte_trace()] * 4)
        payload_only = SizeAccountant(include_attributes=False)
        first = harmonize(make_config(1, 1, 8), accountant=payload_only)
        assert len(first.segments) == 2

        second = harmonize(make_config(1, 1, 16, overwrite=True), accountant=payload_only)

        assert len(second.segments) == 1
        assert sorted(p.name for p in harmonic_dir.glob("run_*.h5")) == ["run_0001.h5"]
        copied = [o for _, origins in _harmonic_contents(second) for o in origins]
        assert copied == [(1, 0), (1, 1), (1, 2), (1, 3)]

    def test_stale_run_without_overwrite(self, write_run, make_config, harmonic_dir):
        write_run(1, [four_byte_trace()])
        construct_run_path(harmonic_dir, 7).write_bytes(b"old")
        with pytest.raises(WriteConflictError, match="run_0007.h5"):
            harmonize(make_config(1, 1, 8))
        assert not construct_run_path(harmonic_dir, 1).exists()

    def test_empty_range(self, make_config, harmonic_dir):
        report = harmonize(make_config(1, 3, 8))
        assert report.segments == ()
        assert len(report.warnings) == 3
        assert [p.name for p in harmonic_dir.iterdir()] == [SCALER_FILE_NAME]


def test_progress_called_per_event(write_run, make_config):
    write_run(1, [four_byte_trace()] * 4)
    seen = []
    harmonize(make_config(1, 1, 8), progress=lambda e: seen.append(e.key))
    assert seen == [(1, 0), (1, 1), (1, 2), (1, 3)]
