"""Harmonizer configuration -- everything one harmonizing session needs.

A HarmonizerConfig groups the directories, the size budget and the run range
into one frozen dataclass. It can be:

- Loaded from / saved to a YAML file (``load`` / ``save``)
- Overridden field-by-field via ``dataclasses.replace()``
- Serialized to/from a plain dict
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict

import yaml

from harmonizer.errors import ConfigError

# Decimal gigabytes, as used by the operators when sizing harmonic runs.
BYTES_PER_GB = 1_000_000_000


@dataclass(frozen=True)
class HarmonizerConfig:
    """Frozen configuration for one harmonizing session.

    Fields
    ------
    merger_path : Path
        Directory holding the merger runs (``run_NNNN.h5``). Must exist.
    harmonic_path : Path
        Destination directory. Must exist before the session starts; the
        harmonizer never creates it.
    harmonic_size_gb : float
        Target size of one harmonic run, in GB (10^9 bytes).
    min_run, max_run : int
        Inclusive merger run range. Runs may be missing inside the range.
    overwrite : bool
        Allow replacing harmonic runs / scaler table left by an earlier session.
    """

    merger_path: Path = Path("/path/to/some/merger/data/")
    harmonic_path: Path = Path("/path/to/some/harmonic/data/")
    harmonic_size_gb: float = 10.0
    min_run: int = 0
    max_run: int = 0
    overwrite: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "merger_path", Path(self.merger_path))
        object.__setattr__(self, "harmonic_path", Path(self.harmonic_path))

    @property
    def harmonic_size_bytes(self) -> int:
        return int(round(float(self.harmonic_size_gb) * BYTES_PER_GB))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> "HarmonizerConfig":
        """Check every field; raise ConfigError on the first problem. Returns self."""
        if not self.merger_path.is_dir():
            raise ConfigError(f"Merger path {self.merger_path} does not exist or is not a directory.")
        if not self.harmonic_path.is_dir():
            raise ConfigError(
                f"Harmonic path {self.harmonic_path} does not exist! "
                "Please create it before running the harmonizer."
            )
        # Merger and harmonic runs share the run_NNNN.h5 naming.
        if self.merger_path.resolve() == self.harmonic_path.resolve():
            raise ConfigError(
                f"Harmonic path {self.harmonic_path} is the merger path; "
                "harmonic runs would replace the source runs."
            )
        try:
            size = float(self.harmonic_size_gb)
        except (TypeError, ValueError):
            raise ConfigError(f"harmonic_size_gb must be a number, got {self.harmonic_size_gb!r}") from None
        if not size > 0 or self.harmonic_size_bytes <= 0:
            raise ConfigError(f"harmonic_size_gb must be > 0, got {self.harmonic_size_gb!r}")
        if int(self.min_run) > int(self.max_run):
            raise ConfigError(f"min_run ({self.min_run}) must be <= max_run ({self.max_run})")
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Return a YAML-friendly dict (paths become strings)."""
        d = asdict(self)
        d["merger_path"] = str(self.merger_path)
        d["harmonic_path"] = str(self.harmonic_path)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HarmonizerConfig":
        """Reconstruct from a dict (e.g. parsed YAML). Unknown keys are rejected."""
        if not isinstance(d, dict):
            raise ConfigError(f"Configuration must be a mapping, got {type(d).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        missing = sorted(k for k in ("merger_path", "harmonic_path", "harmonic_size_gb", "min_run", "max_run") if k not in d)
        if missing:
            raise ConfigError(f"Missing configuration keys: {', '.join(missing)}")
        try:
            return cls(
                merger_path=Path(d["merger_path"]),
                harmonic_path=Path(d["harmonic_path"]),
                harmonic_size_gb=float(d["harmonic_size_gb"]),
                min_run=int(d["min_run"]),
                max_run=int(d["max_run"]),
                overwrite=bool(d.get("overwrite", False)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Malformed configuration value: {e}") from e

    @classmethod
    def load(cls, path: str | Path) -> "HarmonizerConfig":
        p = Path(path)
        if not p.exists():
            raise ConfigError(f"Attempted to load configuration from non-existent path: {p}")
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse configuration {p}: {e}") from e
        return cls.from_dict(data)

    def save(self, path: str | Path) -> None:
        p = Path(path)
        p.write_text(yaml.safe_dump(self.to_dict(), sort_keys=False), encoding="utf-8")
