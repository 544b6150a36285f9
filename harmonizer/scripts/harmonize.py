"""Command line entry point: ``harmonizer --config path/to/config.yml [new]``.

``new`` writes a template configuration to the given path and exits.
Without a subcommand the configuration is loaded, validated and the
session runs to completion (exit 0) or aborts (exit 1).
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from tqdm import tqdm

from harmonizer import __version__
from harmonizer.errors import HarmonizerError
from harmonizer.ingest.discovery import count_events, discover
from harmonizer.models.config import HarmonizerConfig
from harmonizer.repack.orchestrator import harmonize

_LOG = logging.getLogger("harmonizer")

_RULE = "-" * 61
_BANNER = "--------------------- AT-TPC Harmonizer ---------------------"


def human_bytes(n: float) -> str:
    """Format a byte count with binary prefixes (e.g. '1.5 GiB')."""
    value = float(n)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(value) < 1024.0 or unit == "TiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024.0
    return f"{value:.1f} PiB"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def _write_template(config_path: Path) -> int:
    print(f"Making a template configuration file at {config_path}...")
    HarmonizerConfig().save(config_path)
    print("Done.")
    return 0


def _run(config_path: Path, *, show_progress: bool) -> int:
    config = HarmonizerConfig.load(config_path)
    print(f"Successfully loaded configuration from {config_path}")
    config.validate()

    catalog = discover(config.min_run, config.max_run, config.merger_path)
    for w in catalog.warnings:
        print(f"[warn] {w}")
    print(f"Total amount of data to be harmonized: {human_bytes(catalog.total_bytes())}")
    print("Harmonizing...")

    bar = tqdm(total=count_events(catalog), unit="event", desc="Progress", disable=not show_progress)
    try:
        report = harmonize(config, catalog=catalog, progress=lambda _event: bar.update(1))
    finally:
        bar.close()

    print(f"Wrote {len(report.segments)} harmonic run(s) holding {report.n_events} event(s)")
    print(f"Wrote {report.n_scalers} scaler row(s) to {report.scaler_path}")
    print("Complete.")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    import argparse
    import textwrap

    p = argparse.ArgumentParser(
        prog="harmonizer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=textwrap.dedent(
            """\
            Re-organize a range of AT-TPC merger runs into equally sized harmonic runs.

            The harmonic path named in the configuration must exist before running.
            Only harmonize runs taken with the same gas and beam.
            """
        ),
    )
    p.add_argument("-c", "--config", required=True, help="Path to a configuration file (YAML)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--no-progress", action="store_true", help="Do not display a progress bar")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command")
    sub.add_parser("new", help="Create a new template config file")

    args = p.parse_args(argv)
    _configure_logging(args.verbose)

    print(_BANNER)
    config_path = Path(args.config)
    try:
        if args.command == "new":
            return _write_template(config_path)
        return _run(config_path, show_progress=not args.no_progress)
    except HarmonizerError as e:
        _LOG.error("%s", e)
        print(f"Harmonizing failed: {e}", file=sys.stderr)
        return 1
    finally:
        print(_RULE)


if __name__ == "__main__":
    raise SystemExit(main())
