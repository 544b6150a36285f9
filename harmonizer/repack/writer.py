"""Harmonic run writer -- the segment state machine.

The writer owns at most one open output file (a *segment*, written as
``run_NNNN.h5`` in the harmonic directory) and decides where segments end:

- ``closed``: no file open. The next submitted event opens segment N+1.
- ``open``: events are appended under consecutive local indices.

A segment is finalized (``max_event`` written, file closed) when

- the next event would push the running total past the budget -- that event
  then opens the following segment, or
- the event that opened the segment is, on its own, larger than the budget, or
- :meth:`HarmonicSegmentWriter.close` is called at end of input.

An event is never split and never dropped: a fresh segment accepts its first
event whatever its size, so the budget is a soft cap.

Output layout::

    run_0001.h5
    |---- events - min_event, max_event, version
    |    |---- event_# - orig_run, orig_event
    |    |    |---- get_traces(dset) - id, timestamp, timestamp_other
    |    |    |---- frib_physics - event, timestamp
    |    |    |    |---- 977(dset)
    |    |    |    |---- 1903(dset)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional, Tuple

import h5py
import numpy as np

from harmonizer import __version__
from harmonizer.errors import OutputIOError, WriteConflictError
from harmonizer.ingest.discovery import construct_run_path
from harmonizer.models.events import MergerEvent
from harmonizer.repack.sizing import SizeAccountant

_LOG = logging.getLogger(__name__)

WriterState = Literal["closed", "open"]

HARMONIZER_VERSION = f"harmonizer:{__version__}"

_HARMONIC_NAME = re.compile(r"run_\d{4,}\.h5")


@dataclass(frozen=True)
class HarmonicSegment:
    """Summary of one finalized harmonic run."""
    number: int
    path: Path
    n_events: int
    n_bytes: int
    first_origin: Tuple[int, int]
    last_origin: Tuple[int, int]

    @property
    def min_event(self) -> int:
        return 0

    @property
    def max_event(self) -> int:
        return self.n_events - 1


class HarmonicSegmentWriter:
    """
    Streaming bin-packer writing harmonic runs of about ``harmonic_size`` bytes.

    Parameters
    ----------
    harmonic_path:
        Destination directory. Must already exist.
    harmonic_size:
        Size budget of one harmonic run, in bytes (> 0).
    accountant:
        Tracks the running total of the open segment; also used to size
        events submitted without an explicit size.
    overwrite:
        If False, finding an existing ``run_NNNN.h5`` is a WriteConflictError.
    """

    def __init__(
        self,
        harmonic_path: str | Path,
        harmonic_size: int,
        *,
        accountant: Optional[SizeAccountant] = None,
        overwrite: bool = False,
    ) -> None:
        self.harmonic_path = Path(harmonic_path)
        self.harmonic_size = int(harmonic_size)
        if self.harmonic_size <= 0:
            raise ValueError(f"harmonic_size must be > 0 bytes, got {harmonic_size}")
        self.accountant = accountant or SizeAccountant()
        self.overwrite = bool(overwrite)

        self.current_run = 0
        self.current_event = 0
        self.segments: List[HarmonicSegment] = []

        self._file: Optional[h5py.File] = None
        self._events: Optional[h5py.Group] = None
        self._path: Optional[Path] = None
        self._first_origin: Optional[Tuple[int, int]] = None
        self._last_origin: Optional[Tuple[int, int]] = None
        self._finished = False

    @property
    def state(self) -> WriterState:
        return "open" if self._file is not None else "closed"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, event: MergerEvent, size: Optional[int] = None) -> int:
        """
        Place one event. Returns the harmonic run number it was written to.

        ``size`` is the event's byte cost; computed with the accountant if omitted.
        """
        if self._finished:
            raise RuntimeError("writer is closed; no more events can be submitted")
        nbytes = self.accountant.size_of(event) if size is None else int(size)
        if nbytes < 0:
            raise ValueError(f"event size must be >= 0, got {nbytes}")

        # A segment is "fresh" until it holds an event; zero-byte events count.
        if (
            self._file is not None
            and self.current_event > 0
            and not self.accountant.fits(nbytes, self.harmonic_size)
        ):
            self._finish_segment()

        if self._file is None:
            self._start_segment()

        oversize = self.current_event == 0 and nbytes > self.harmonic_size
        number = self.current_run
        self._copy_event(event)
        self.accountant.place(nbytes)

        if oversize:
            _LOG.warning(
                "run %d event %d alone is %d bytes (budget %d); it gets harmonic run %d to itself",
                event.run_number, event.event, nbytes, self.harmonic_size, number,
            )
            self._finish_segment()
        return number

    def prepare_destination(self) -> List[Path]:
        """
        Make sure no harmonic run from an earlier session survives this one.

        Without ``overwrite`` any existing ``run_NNNN.h5`` is a WriteConflictError.
        With it, every such file is removed up front so a shorter session cannot
        leave higher-numbered leftovers behind. Returns the removed paths.
        """
        if self.segments or self._file is not None:
            raise RuntimeError("destination must be prepared before the first event")
        existing = sorted(
            p for p in self.harmonic_path.glob("run_*.h5")
            if _HARMONIC_NAME.fullmatch(p.name) and p.is_file()
        )
        if not existing:
            return []
        if not self.overwrite:
            raise WriteConflictError(
                f"Harmonic directory {self.harmonic_path} already holds {len(existing)} harmonic run(s), "
                f"first {existing[0].name} (set overwrite to replace them)"
            )
        for path in existing:
            try:
                path.unlink()
            except OSError as e:
                raise OutputIOError(f"could not remove old harmonic run {path}: {e}") from e
        _LOG.info("removed %d harmonic run(s) left in %s", len(existing), self.harmonic_path)
        return existing

    def close(self) -> List[HarmonicSegment]:
        """Finalize the open segment (if any). Returns every segment written."""
        if self._file is not None:
            self._finish_segment()
        self._finished = True
        return list(self.segments)

    def abort(self) -> None:
        """Release the open file without finalizing it (fatal error path)."""
        self._finished = True
        if self._file is not None:
            try:
                self._file.close()
            except OSError as e:
                _LOG.error("failed to close %s after abort: %s", self._path, e)
            finally:
                self._file = None
                self._events = None
            _LOG.warning("harmonic run %d left incomplete at %s", self.current_run, self._path)

    def __enter__(self) -> "HarmonicSegmentWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    # ------------------------------------------------------------------
    # Segment lifecycle
    # ------------------------------------------------------------------

    def _start_segment(self) -> None:
        number = self.current_run + 1
        path = construct_run_path(self.harmonic_path, number)
        if path.exists() and not self.overwrite:
            raise WriteConflictError(f"Harmonic run {path} already exists (set overwrite to replace it)")
        try:
            f = h5py.File(path, "w")
        except OSError as e:
            raise OutputIOError(f"could not create harmonic run {path}: {e}") from e

        try:
            events = f.create_group("events")
            events.attrs["min_event"] = np.uint64(0)
            events.attrs["version"] = HARMONIZER_VERSION
        except OSError as e:
            f.close()
            raise OutputIOError(f"could not initialize harmonic run {path}: {e}") from e

        self.current_run = number
        self.current_event = 0
        self._file = f
        self._events = events
        self._path = path
        self._first_origin = None
        self._last_origin = None
        self.accountant.reset()
        _LOG.debug("opened harmonic run %d at %s", number, path)

    def _finish_segment(self) -> None:
        assert self._file is not None and self._events is not None and self._path is not None
        path = self._path
        try:
            self._events.attrs["max_event"] = np.uint64(self.current_event - 1)
            self._file.close()
        except OSError as e:
            raise OutputIOError(f"could not finalize harmonic run {path}: {e}") from e
        finally:
            self._file = None
            self._events = None

        seg = HarmonicSegment(
            number=self.current_run,
            path=path,
            n_events=self.current_event,
            n_bytes=self.accountant.running_total,
            first_origin=self._first_origin or (0, 0),
            last_origin=self._last_origin or (0, 0),
        )
        self.segments.append(seg)
        self.accountant.reset()
        _LOG.info(
            "harmonic run %d: %d event(s), %d bytes, origin %s..%s",
            seg.number, seg.n_events, seg.n_bytes, seg.first_origin, seg.last_origin,
        )

    # ------------------------------------------------------------------
    # Event copy
    # ------------------------------------------------------------------

    def _copy_event(self, event: MergerEvent) -> None:
        assert self._events is not None
        try:
            grp = self._events.create_group(f"event_{self.current_event}")
            grp.attrs["orig_run"] = np.int32(event.run_number)
            grp.attrs["orig_event"] = np.uint64(event.event)

            if event.get is not None:
                ds = grp.create_dataset("get_traces", data=event.get.traces)
                for name, value in event.get.attrs.items():
                    ds.attrs[name] = value

            if event.frib is not None:
                frib = grp.create_group("frib_physics")
                for name, value in event.frib.attrs.items():
                    frib.attrs[name] = value
                for channel, data in event.frib.channels.items():
                    ds = frib.create_dataset(channel, data=data)
                    for name, value in event.frib.channel_attrs.get(channel, {}).items():
                        ds.attrs[name] = value
        except OSError as e:
            raise OutputIOError(
                f"could not write run {event.run_number} event {event.event} to {self._path}: {e}"
            ) from e

        if self._first_origin is None:
            self._first_origin = event.key
        self._last_origin = event.key
        self.current_event += 1
