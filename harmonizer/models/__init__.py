from .catalog import RunCatalog, RunHandle
from .config import HarmonizerConfig
from .events import SCALER_CHANNELS, GetTraces, MergerEvent, PhysicsChannels, ScalerRecord

__all__ = [
    "RunCatalog",
    "RunHandle",
    "HarmonizerConfig",
    "SCALER_CHANNELS",
    "GetTraces",
    "MergerEvent",
    "PhysicsChannels",
    "ScalerRecord",
]
