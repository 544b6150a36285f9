from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np


# Channel names of one scaler readout, in on-disk order.
SCALER_CHANNELS: Tuple[str, ...] = (
    "clock_free",
    "clock_live",
    "trig_free",
    "trig_live",
    "ic_sca",
    "mesh_sca",
    "si1_cfd",
    "si2",
    "sipm",
    "ic_ds",
    "ic_cfd",
)


@dataclass(frozen=True)
class GetTraces:
    """
    Detector trace block of one event (the ``get_traces`` dataset).

    traces: 2-D array, one row per hit pad (hardware address + samples).
    attrs: every attribute found on the dataset. ``id``, ``timestamp`` and
      ``timestamp_other`` are always present (validated at read time); any
      extra attribute is carried along so the copy stays verbatim.
    """
    traces: np.ndarray
    attrs: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> int:
        return int(self.attrs["id"])

    @property
    def timestamp(self) -> int:
        return int(self.attrs["timestamp"])

    @property
    def timestamp_other(self) -> int:
        return int(self.attrs["timestamp_other"])


@dataclass(frozen=True)
class PhysicsChannels:
    """
    Auxiliary DAQ block of one event (the ``frib_physics`` group).

    channels: sub-datasets keyed by channel identifier (e.g. ``"977"``,
      ``"1903"``), in ascending identifier order.
    attrs: group attributes (``event``, ``timestamp``).
    channel_attrs: per-channel dataset attributes, usually empty.
    """
    channels: Dict[str, np.ndarray] = field(default_factory=dict)
    attrs: Dict[str, Any] = field(default_factory=dict)
    channel_attrs: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class MergerEvent:
    """One event read from a merger run, identified by (run_number, event)."""
    run_number: int
    event: int
    get: Optional[GetTraces] = None
    frib: Optional[PhysicsChannels] = None

    @property
    def key(self) -> Tuple[int, int]:
        return (self.run_number, self.event)


@dataclass(frozen=True)
class ScalerRecord:
    """
    One scaler readout from a run.

    event: scaler index within the run.
    timestamp: readout time when the file provides one, otherwise the scaler index.
    values: channel values in SCALER_CHANNELS order.
    """
    run_number: int
    event: int
    timestamp: int
    values: Tuple[int, ...]

    def as_row(self) -> Dict[str, int]:
        row = {"run": int(self.run_number), "event": int(self.event), "timestamp": int(self.timestamp)}
        for name, v in zip(SCALER_CHANNELS, self.values):
            row[name] = int(v)
        return row
