"""prusa-exporter - Prometheus metrics for fleets of PrusaLink printers.

Polls every configured printer over its local HTTP API, normalises the
firmware-specific payloads and republishes them as gauges for a
Prometheus scrape.
"""

from __future__ import annotations

import logging
import re
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

_logger = logging.getLogger(__name__)

_DIST_NAME = "prusa-exporter"


def _resolve_version() -> str:
    """Return the version from a source checkout, else from installed metadata."""
    # A git checkout wins so an older installed wheel never shadows it.
    pyproject = Path(__file__).resolve().parents[2] / "pyproject.toml"
    try:
        if pyproject.is_file():
            match = re.search(
                r'(?m)^\s*version\s*=\s*"([^"]+)"\s*$',
                pyproject.read_text(encoding="utf-8"),
            )
            if match:
                return match.group(1)
    except OSError as exc:
        _logger.debug("Could not read %s: %s", pyproject, exc)

    try:
        return version(_DIST_NAME)
    except PackageNotFoundError:
        return "unknown"


__version__ = _resolve_version()
