"""Repack package - the harmonic run engine.

Design principle:
  - Ingest produces validated MergerEvent / ScalerRecord values.
  - Repack decides harmonic run boundaries from logical byte size only and
    copies events verbatim, tagging each with its origin run and event.

Hard constraints:
  - No event is split, dropped or duplicated.
  - At most one harmonic run file is open at any time.
"""

from .orchestrator import HarmonizeReport, harmonize
from .scalers import SCALER_COLUMNS, SCALER_FILE_NAME, ScalerAggregator
from .sizing import SizeAccountant
from .writer import HarmonicSegment, HarmonicSegmentWriter

__all__ = [
    "HarmonizeReport",
    "harmonize",
    "SCALER_COLUMNS",
    "SCALER_FILE_NAME",
    "ScalerAggregator",
    "SizeAccountant",
    "HarmonicSegment",
    "HarmonicSegmentWriter",
]
