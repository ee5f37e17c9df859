"""Per-family PrusaLink façades and the constructor that picks one.

Only two things vary between families: how the current job is read and
which optional endpoints exist.  Everything else is inherited from
:class:`~prusa_exporter.printers.base.PrinterFacade`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from prusa_exporter.printers.base import (
    FirmwareFamily,
    Job,
    PrinterCapabilities,
    PrinterFacade,
    _PayloadReader,
)
from prusa_exporter.printers.classifier import classify

if TYPE_CHECKING:
    from prusa_exporter.config import TargetConfig
    from prusa_exporter.printers.client import EndpointClient

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Job payload shapes
# ---------------------------------------------------------------------------


def job_from_legacy_payload(payload: dict[str, Any]) -> Job:
    """Normalise ``GET /api/job``: nested ``job.file`` and ``progress`` blocks."""
    reader = _PayloadReader(payload, "job")
    return Job(
        job_id=0,
        file_name=reader.text("job", "file", "name", default=""),
        file_path=reader.text("job", "file", "path", default=""),
        progress=reader.number("progress", "completion", default=0.0),
        time_elapsed=reader.number("progress", "printTime", default=0.0),
        time_remaining=reader.number("progress", "printTimeLeft", default=0.0),
    )


def job_from_v1_payload(payload: dict[str, Any]) -> Job:
    """Normalise ``GET /api/v1/job``: flat fields plus a ``file`` block.

    The published name is the display name (the long file name); the path
    is the storage folder joined with the short on-disk name.
    """
    reader = _PayloadReader(payload, "v1/job")
    folder = reader.text("file", "path", default="")
    short_name = reader.text("file", "name", default="")
    return Job(
        job_id=reader.integer("id", default=0),
        file_name=reader.text("file", "display_name", default=""),
        file_path=f"{folder}/{short_name}" if short_name else "",
        progress=reader.number("progress", default=0.0),
        time_elapsed=reader.number("time_printing", default=0.0),
        time_remaining=reader.number("time_remaining", default=0.0),
    )


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------


class _LegacyJobPrinter(PrinterFacade):
    """Families that still serve the OctoPrint-compatible ``/api/job``."""

    def get_job(self) -> Job:
        return job_from_legacy_payload(self._get_json("job"))


class EinsyPrinter(_LegacyJobPrinter):
    """MK3/MK2.5 family running PrusaLink on a Raspberry Pi."""

    family = FirmwareFamily.EINSY
    capabilities = PrinterCapabilities(status=True, info=True, settings=True, cameras=True)


class SLPrinter(_LegacyJobPrinter):
    """SL1/SL1S resin printers."""

    family = FirmwareFamily.SL
    capabilities = PrinterCapabilities()
    telemetry_fans = {
        "blower": "fan_blower",
        "rear": "fan_rear",
        "uv": "fan_uv_led",
    }


class BuddyPrinter(PrinterFacade):
    """MINI/MK4/XL family; the job lives on the versioned API."""

    family = FirmwareFamily.BUDDY
    capabilities = PrinterCapabilities(status=True, info=True, storage=True)

    def get_job(self) -> Job:
        # 204 No Content when nothing is loaded.
        return job_from_v1_payload(self._get_json("v1/job", allow_empty=True))


_FACADES: dict[FirmwareFamily, type[PrinterFacade]] = {
    FirmwareFamily.BUDDY: BuddyPrinter,
    FirmwareFamily.EINSY: EinsyPrinter,
    FirmwareFamily.SL: SLPrinter,
}


def new_printer(target: TargetConfig, client: EndpointClient) -> PrinterFacade:
    """Classify *target* once and return the matching façade.

    Raises:
        UnknownFamily: If the model cannot be mapped to a family.
        NetworkError: If classification had to probe and the printer was
            unreachable.
        DecodeError: If a classification probe returned garbage.
    """
    result = classify(target, client)
    facade_cls = _FACADES[result.family]
    return facade_cls(target, result.model, client)
