"""Harmonizer -- repack AT-TPC merger runs into equally sized harmonic runs.

AT-TPC runs are unbalanced: some are large, some are nearly empty. Parallel
analyses use one file as their unit of work, so the harmonizer takes a range
of merger runs and re-partitions their events into "harmonic runs" of about
the same number of bytes.

This package provides tools for:
- Discovering merger runs (run_NNNN.h5) within an inclusive run range
- Validating and streaming events out of modern and legacy merger files
- Packing events into harmonic runs by logical byte size, tagging every
  copied event with its origin run and event number
- Consolidating the scalers of every run into one scalers.parquet table

Key principles:
- Bytes are the only balancing signal
- Events are never split, dropped or duplicated
- Source runs are never modified

Main subpackages:
- ingest: run discovery, layout schema and RunReader
- models: configuration, catalog and event data models
- repack: size accounting, harmonic writer, scaler aggregation, orchestration
- scripts: the ``harmonizer`` command line
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
