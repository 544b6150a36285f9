"""Exception types raised by the harmonizer.

Each class also derives from the builtin a caller would otherwise expect
(``ValueError`` for bad content, ``OSError`` for filesystem failures), so
existing ``except ValueError`` handlers keep working.

Missing runs are *not* errors: discovery records them as warnings on the
:class:`~harmonizer.models.catalog.RunCatalog` and continues.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class HarmonizerError(Exception):
    """Base class for every fatal harmonizer failure."""


class ConfigError(HarmonizerError, ValueError):
    """Invalid or incomplete configuration. Raised before any run is read."""


class RunError(HarmonizerError):
    """Failure tied to one input run.

    The message always names the run number and the file path so the
    operator can locate the offending run.
    """

    def __init__(self, message: str, *, run_number: Optional[int] = None, path: Optional[Path] = None):
        self.run_number = run_number
        self.path = Path(path) if path is not None else None
        prefix = []
        if run_number is not None:
            prefix.append(f"run {run_number}")
        if self.path is not None:
            prefix.append(str(self.path))
        text = f"[{', '.join(prefix)}] {message}" if prefix else message
        super().__init__(text)


class RunFormatError(RunError, ValueError):
    """Required groups, datasets or attributes are absent or malformed."""


class RunIOError(RunError, OSError):
    """Filesystem failure while opening or reading a run."""


class WriteConflictError(HarmonizerError, FileExistsError):
    """An output file already exists and overwrite was not permitted."""


class OutputIOError(HarmonizerError, OSError):
    """Filesystem failure while writing harmonic runs or the scaler table."""
