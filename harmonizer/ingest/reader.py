from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Literal, Optional

import h5py
import numpy as np

from harmonizer.errors import RunFormatError, RunIOError
from harmonizer.ingest import schema
from harmonizer.models.events import SCALER_CHANNELS, GetTraces, MergerEvent, PhysicsChannels, ScalerRecord

_LOG = logging.getLogger(__name__)

Layout = Literal["modern", "legacy"]

# Problems listed in a format error before the list is cut short.
_MAX_REPORTED_PROBLEMS = 20


def _read_attrs(obj: h5py.HLObject) -> Dict[str, Any]:
    """Attribute values as stored (numpy scalars keep their on-disk dtype)."""
    return {name: obj.attrs[name] for name in obj.attrs.keys()}


def _channel_sort_key(name: str):
    try:
        return (0, int(name), name)
    except ValueError:
        return (1, 0, name)


class RunReader:
    """
    Reader for one merger run file (modern or legacy layout).

    The file is opened and validated against :mod:`harmonizer.ingest.schema`
    in :meth:`open`; a run that does not match the layout is rejected with a
    RunFormatError before a single event is produced.

    Usage::

        with RunReader.open(55, path) as reader:
            for event in reader.events():
                ...
            for record in reader.scalers():
                ...

    ``events()`` and ``scalers()`` are forward-only: each may be iterated once.
    """

    def __init__(self, run_number: int, path: str | Path):
        self.run_number = int(run_number)
        self.path = Path(path)
        self._file: Optional[h5py.File] = None
        self.layout: Optional[Layout] = None
        self.min_event = 0
        self.max_event = -1
        self._scaler_range: Optional[range] = None
        self._events_taken = False
        self._scalers_taken = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, run_number: int, path: str | Path) -> "RunReader":
        reader = cls(run_number, path)
        reader._open()
        return reader

    def _open(self) -> None:
        try:
            self._file = h5py.File(self.path, "r")
        except OSError as e:
            raise RunIOError(f"could not open run file: {e}", run_number=self.run_number, path=self.path) from e
        try:
            self._init_layout()
        except BaseException:
            self.close()
            raise

    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            finally:
                self._file = None

    @property
    def closed(self) -> bool:
        return self._file is None

    def __enter__(self) -> "RunReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def n_events(self) -> int:
        return max(0, self.max_event - self.min_event + 1)

    def _fail(self, problems: List[str]) -> None:
        shown = problems[:_MAX_REPORTED_PROBLEMS]
        more = len(problems) - len(shown)
        msg = "invalid merger file:\n  " + "\n  ".join(shown)
        if more > 0:
            msg += f"\n  ... and {more} more problem(s)"
        raise RunFormatError(msg, run_number=self.run_number, path=self.path)

    def _init_layout(self) -> None:
        f = self._file
        assert f is not None
        try:
            if "meta" in f:
                self.layout = "legacy"
                self._validate_legacy(f)
            elif "events" in f:
                self.layout = "modern"
                self._validate_modern(f)
            else:
                self._fail(["no 'events' group (modern) or 'meta' group (legacy): invalid merger version"])
        except OSError as e:
            raise RunIOError(f"read failure during validation: {e}", run_number=self.run_number, path=self.path) from e
        _LOG.debug(
            "run %d: %s layout, events %d..%d",
            self.run_number, self.layout, self.min_event, self.max_event,
        )

    def _validate_modern(self, f: h5py.File) -> None:
        problems = schema.check(f, schema.MODERN_ROOT, "/")
        if problems:
            self._fail(problems)

        events = f["events"]
        self.min_event = int(events.attrs["min_event"])
        self.max_event = int(events.attrs["max_event"])
        for n in range(self.min_event, self.max_event + 1):
            spec = schema.modern_event(n)
            child = events.get(spec.name)
            if child is None:
                problems.append(f"/events/{spec.name}: missing")
                continue
            problems.extend(schema.check(child, spec, f"/events/{spec.name}"))

        if "scalers" in f:
            scalers = f["scalers"]
            lo = int(scalers.attrs["min_event"])
            hi = int(scalers.attrs["max_event"])
            self._scaler_range = range(lo, hi + 1)
            for n in self._scaler_range:
                spec = schema.modern_scaler(n)
                child = scalers.get(spec.name)
                if child is None:
                    problems.append(f"/scalers/{spec.name}: missing")
                    continue
                problems.extend(schema.check(child, spec, f"/scalers/{spec.name}"))

        if problems:
            self._fail(problems)

    def _validate_legacy(self, f: h5py.File) -> None:
        problems = schema.check(f, schema.LEGACY_ROOT, "/")
        if problems:
            self._fail(problems)

        meta = f["meta"]["meta"][()]
        self.min_event = int(meta[0])
        self.max_event = int(meta[2])
        get_group = f["get"]
        frib_evt = f["frib"]["evt"]
        for n in range(self.min_event, self.max_event + 1):
            problems.extend(schema.check(get_group, schema.legacy_get(n), "/get"))
            problems.extend(schema.check(frib_evt, schema.legacy_frib(n), "/frib/evt"))

        if "scaler" in f["frib"]:
            scaler_group = f["frib"]["scaler"]
            n = 0
            while f"scaler{n}_data" in scaler_group:
                spec = schema.legacy_scaler(n)
                problems.extend(schema.check(scaler_group[spec.name], spec, f"/frib/scaler/{spec.name}"))
                n += 1
            self._scaler_range = range(0, n)

        if problems:
            self._fail(problems)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _require_open(self) -> h5py.File:
        if self._file is None:
            raise RuntimeError(f"run {self.run_number}: reader is closed")
        return self._file

    def events(self) -> Iterator[MergerEvent]:
        """Events in ascending event number. Single pass."""
        self._require_open()
        if self._events_taken:
            raise RuntimeError(f"run {self.run_number}: events() can only be iterated once")
        self._events_taken = True
        return self._iter_events()

    def _iter_events(self) -> Iterator[MergerEvent]:
        read = self._read_event_modern if self.layout == "modern" else self._read_event_legacy
        for n in range(self.min_event, self.max_event + 1):
            f = self._require_open()
            try:
                event = read(f, n)
            except OSError as e:
                raise RunIOError(f"failed reading event {n}: {e}", run_number=self.run_number, path=self.path) from e
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise RunFormatError(f"event {n} is malformed: {e}", run_number=self.run_number, path=self.path) from e
            yield event

    def _read_event_modern(self, f: h5py.File, n: int) -> MergerEvent:
        grp = f["events"][f"event_{n}"]

        get = None
        ds = grp.get("get_traces")
        if ds is not None:
            get = GetTraces(traces=ds[()], attrs=_read_attrs(ds))

        frib = None
        fg = grp.get("frib_physics")
        if fg is not None:
            names = sorted((k for k, v in fg.items() if isinstance(v, h5py.Dataset)), key=_channel_sort_key)
            frib = PhysicsChannels(
                channels={k: fg[k][()] for k in names},
                attrs=_read_attrs(fg),
                channel_attrs={k: _read_attrs(fg[k]) for k in names if len(fg[k].attrs) > 0},
            )

        return MergerEvent(run_number=self.run_number, event=n, get=get, frib=frib)

    def _read_event_legacy(self, f: h5py.File, n: int) -> MergerEvent:
        get = None
        get_group = f["get"]
        if f"evt{n}_data" in get_group:
            header = get_group[f"evt{n}_header"][()]
            get = GetTraces(
                traces=get_group[f"evt{n}_data"][()],
                attrs={
                    "id": np.uint32(header[0]),
                    "timestamp": np.uint64(header[1]),
                    "timestamp_other": np.uint64(header[2]),
                },
            )

        frib = None
        frib_evt = f["frib"]["evt"]
        if f"evt{n}_1903" in frib_evt:
            header = frib_evt[f"evt{n}_header"][()]
            frib = PhysicsChannels(
                channels={
                    "977": frib_evt[f"evt{n}_977"][()],
                    "1903": frib_evt[f"evt{n}_1903"][()],
                },
                attrs={"event": np.uint32(header[0]), "timestamp": np.uint32(header[1])},
            )

        return MergerEvent(run_number=self.run_number, event=n, get=get, frib=frib)

    # ------------------------------------------------------------------
    # Scalers
    # ------------------------------------------------------------------

    def scalers(self) -> Iterator[ScalerRecord]:
        """Scaler readouts in ascending order. Single pass; empty when the run has none."""
        self._require_open()
        if self._scalers_taken:
            raise RuntimeError(f"run {self.run_number}: scalers() can only be iterated once")
        self._scalers_taken = True
        return self._iter_scalers()

    def _iter_scalers(self) -> Iterator[ScalerRecord]:
        if self._scaler_range is None:
            return
        for n in self._scaler_range:
            f = self._require_open()
            try:
                if self.layout == "modern":
                    ds = f["scalers"][f"event_{n}"]
                else:
                    ds = f["frib"]["scaler"][f"scaler{n}_data"]
                data = ds[()]
                ts = ds.attrs.get("timestamp", n)
                record = ScalerRecord(
                    run_number=self.run_number,
                    event=n,
                    timestamp=int(np.asarray(ts).reshape(-1)[0]),
                    values=tuple(int(v) for v in data[: len(SCALER_CHANNELS)]),
                )
            except OSError as e:
                raise RunIOError(f"failed reading scaler {n}: {e}", run_number=self.run_number, path=self.path) from e
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise RunFormatError(f"scaler {n} is malformed: {e}", run_number=self.run_number, path=self.path) from e
            yield record
