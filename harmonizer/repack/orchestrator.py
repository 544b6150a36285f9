from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from harmonizer.errors import WriteConflictError
from harmonizer.ingest.discovery import discover
from harmonizer.ingest.reader import RunReader
from harmonizer.models.catalog import RunCatalog, RunHandle
from harmonizer.models.config import HarmonizerConfig
from harmonizer.models.events import MergerEvent
from harmonizer.repack.scalers import ScalerAggregator
from harmonizer.repack.sizing import SizeAccountant
from harmonizer.repack.writer import HarmonicSegment, HarmonicSegmentWriter

_LOG = logging.getLogger(__name__)

ProgressCallback = Callable[[MergerEvent], None]


@dataclass(frozen=True)
class HarmonizeReport:
    """
    Outcome of one completed session.

    segments: every harmonic run written, in emission order (numbers 1..N).
    n_events: events copied (equals the sum of events of the processed runs).
    n_scalers: rows in the consolidated scaler table.
    warnings: non-fatal discovery findings (missing runs).
    """
    catalog: RunCatalog
    segments: Tuple[HarmonicSegment, ...]
    n_events: int
    n_scalers: int
    scaler_path: Path
    warnings: Tuple[str, ...] = ()

    @property
    def n_runs(self) -> int:
        return len(self.catalog)


def _process_run(
    handle: RunHandle,
    *,
    writer: HarmonicSegmentWriter,
    aggregator: ScalerAggregator,
    accountant: SizeAccountant,
    progress: Optional[ProgressCallback],
) -> int:
    n_events = 0
    with RunReader.open(handle.run_number, handle.path) as reader:
        for event in reader.events():
            writer.submit(event, accountant.size_of(event))
            n_events += 1
            if progress is not None:
                progress(event)
        n_scalers = 0
        for record in reader.scalers():
            aggregator.accept(record, handle.run_number)
            n_scalers += 1
    _LOG.info("run %d: %d event(s), %d scaler(s)", handle.run_number, n_events, n_scalers)
    return n_events


def harmonize(
    config: HarmonizerConfig,
    *,
    accountant: Optional[SizeAccountant] = None,
    progress: Optional[ProgressCallback] = None,
    catalog: Optional[RunCatalog] = None,
) -> HarmonizeReport:
    """
    Run one harmonizing session.

    Runs are processed in ascending run number; within a run every event is
    sized and submitted to the writer, then every scaler readout goes to the
    aggregator. After the last run the final segment is flushed and the scaler
    table is written.

    Any error reading a run or writing output aborts the whole session; the
    open harmonic run is closed but left incomplete, and nothing already
    written in the harmonic directory should be used. Missing runs are only
    warnings (see ``HarmonizeReport.warnings``).

    Harmonic runs already in the destination are a WriteConflictError unless
    ``config.overwrite`` is set, in which case they are removed before the
    first event is written.

    ``catalog`` may be passed when the caller already ran discovery.
    """
    config.validate()
    if catalog is None:
        catalog = discover(config.min_run, config.max_run, config.merger_path)

    accountant = accountant or SizeAccountant()
    writer = HarmonicSegmentWriter(
        config.harmonic_path,
        config.harmonic_size_bytes,
        accountant=accountant,
        overwrite=config.overwrite,
    )
    aggregator = ScalerAggregator(config.harmonic_path, overwrite=config.overwrite)
    if aggregator.path.exists() and not config.overwrite:
        raise WriteConflictError(f"Scaler table {aggregator.path} already exists (set overwrite to replace it)")
    writer.prepare_destination()

    _LOG.info(
        "harmonizing %d run(s) [%d, %d] into %s, %d bytes per harmonic run",
        len(catalog), config.min_run, config.max_run, config.harmonic_path, config.harmonic_size_bytes,
    )

    n_events = 0
    try:
        for handle in catalog:
            n_events += _process_run(
                handle,
                writer=writer,
                aggregator=aggregator,
                accountant=accountant,
                progress=progress,
            )
        segments = writer.close()
    except BaseException:
        writer.abort()
        raise

    scaler_path = aggregator.finalize()
    _LOG.info("harmonized %d event(s) into %d harmonic run(s)", n_events, len(segments))
    return HarmonizeReport(
        catalog=catalog,
        segments=tuple(segments),
        n_events=n_events,
        n_scalers=len(aggregator),
        scaler_path=scaler_path,
        warnings=catalog.warnings,
    )
