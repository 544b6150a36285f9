"""Ingest package - run discovery and merger file readers.

This package handles:
- Discovery of merger runs (run_NNNN.h5) within an inclusive run range
- Validating a run against the modern or legacy merger layout
- Streaming events and scaler readouts out of one run

Key classes:
- RunDiscovery / discover: builds a RunCatalog, warning about missing runs
- RunReader: opens one run, yields MergerEvent and ScalerRecord values

Design principle:
- A run is validated completely when it is opened; nothing is read lazily
  from a file that has not passed validation
- Source runs are only ever opened read-only
"""

from .discovery import RunDiscovery, construct_run_path, count_events, discover
from .reader import RunReader

__all__ = [
    "RunDiscovery",
    "RunReader",
    "construct_run_path",
    "count_events",
    "discover",
]
