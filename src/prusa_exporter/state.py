"""Reduction of PrusaLink state flags to a single status ordinal.

``GET /api/printer`` reports the printer state as a set of independent
booleans (``printing``, ``ready``, ``operational`` ...).  Several are
usually true at the same time, so the exporter publishes one number per
printer: the first flag that is set, in the fixed order of
:data:`PRIORITY`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class StateOrdinal(enum.IntEnum):
    """Value published by ``prusa_status_info``."""

    NONE = 0
    OPERATIONAL = 1
    PREPARED = 2
    PAUSED = 3
    PRINTING = 4
    CANCELLING = 5
    PAUSING = 6
    ERROR = 7
    SD_READY = 8
    CLOSED_OR_ERROR = 9
    READY = 10
    BUSY = 11
    FINISHED = 12


@dataclass(frozen=True)
class StatusFlags:
    """Raw ``state.flags`` block of ``GET /api/printer``."""

    operational: bool = False
    prepared: bool = False
    paused: bool = False
    printing: bool = False
    cancelling: bool = False
    pausing: bool = False
    error: bool = False
    sd_ready: bool = False
    closed_or_error: bool = False
    closed_on_error: bool = False
    ready: bool = False
    busy: bool = False
    finished: bool = False


# First match wins.  This is not a severity order: "operational" outranks
# "printing" and "printing" outranks "ready".
PRIORITY: tuple[tuple[tuple[str, ...], StateOrdinal], ...] = (
    (("operational",), StateOrdinal.OPERATIONAL),
    (("prepared",), StateOrdinal.PREPARED),
    (("paused",), StateOrdinal.PAUSED),
    (("printing",), StateOrdinal.PRINTING),
    (("cancelling",), StateOrdinal.CANCELLING),
    (("pausing",), StateOrdinal.PAUSING),
    (("error",), StateOrdinal.ERROR),
    (("sd_ready",), StateOrdinal.SD_READY),
    (("closed_or_error", "closed_on_error"), StateOrdinal.CLOSED_OR_ERROR),
    (("ready",), StateOrdinal.READY),
    (("busy",), StateOrdinal.BUSY),
    (("finished",), StateOrdinal.FINISHED),
)


def reduce_state(flags: StatusFlags) -> StateOrdinal:
    """Return the ordinal of the highest-priority flag set in *flags*."""
    for names, ordinal in PRIORITY:
        if any(getattr(flags, name) for name in names):
            return ordinal
    return StateOrdinal.NONE
