"""Firmware-family detection for configured printers.

A target either declares its model code in the configuration (trusted,
never probed) or is identified from the strings PrusaLink reports about
itself.  Both paths end in :data:`MODEL_FAMILIES`; an identity that is not
in that table is a hard failure, never a guess.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prusa_exporter.printers.base import (
    FirmwareFamily,
    Info,
    UnknownFamily,
    Version,
    decode_json,
)

if TYPE_CHECKING:
    from prusa_exporter.config import TargetConfig
    from prusa_exporter.printers.client import EndpointClient

logger = logging.getLogger(__name__)

UNKNOWN_MODEL = "unknown"

# Canonical model code -> firmware family.
MODEL_FAMILIES: dict[str, FirmwareFamily] = {
    "MINI": FirmwareFamily.BUDDY,
    "MK35": FirmwareFamily.BUDDY,
    "MK39": FirmwareFamily.BUDDY,
    "MK4": FirmwareFamily.BUDDY,
    "XL": FirmwareFamily.BUDDY,
    "IX": FirmwareFamily.BUDDY,
    "I3MK3S": FirmwareFamily.EINSY,
    "I3MK3": FirmwareFamily.EINSY,
    "I3MK25S": FirmwareFamily.EINSY,
    "I3MK25": FirmwareFamily.EINSY,
    "SL1": FirmwareFamily.SL,
    "SL1S": FirmwareFamily.SL,
}

# Identity strings reported by firmware -> canonical model code.
MODEL_ALIASES: dict[str, str] = {
    "PrusaMINI": "MINI",
    "PrusaMK4": "MK4",
    "PrusaXL": "XL",
    "PrusaLink I3MK3S": "I3MK3S",
    "PrusaLink I3MK3": "I3MK3",
    "PrusaLink I3MK25S": "I3MK25S",
    "PrusaLink I3MK25": "I3MK25",
    "prusa-sl1": "SL1",
    "prusa-sl1s": "SL1S",
    "Prusa_iX": "IX",
}

_FOLDED_ALIASES: dict[str, str] = {alias.casefold(): code for alias, code in MODEL_ALIASES.items()}
_FOLDED_MODELS: dict[str, str] = {code.casefold(): code for code in MODEL_FAMILIES}


@dataclass(frozen=True)
class Classification:
    """Resolved model code and the family it belongs to."""

    model: str
    family: FirmwareFamily
    probed: bool = False


def resolve_model(identity: str) -> str:
    """Map a reported identity (or a declared code) onto a model code.

    Alias and code lookups ignore case and surrounding whitespace.  An
    identity that matches neither table is returned unchanged; an empty
    one becomes ``"unknown"``.
    """
    cleaned = identity.strip()
    if not cleaned:
        return UNKNOWN_MODEL
    folded = cleaned.casefold()
    if folded in _FOLDED_ALIASES:
        return _FOLDED_ALIASES[folded]
    return _FOLDED_MODELS.get(folded, cleaned)


def family_for(model: str) -> FirmwareFamily:
    """Return the family of *model*.

    Raises:
        UnknownFamily: If *model* is not a known model code.
    """
    family = MODEL_FAMILIES.get(model)
    if family is None:
        raise UnknownFamily(model)
    return family


def probe_identity(target: TargetConfig, client: EndpointClient) -> str:
    """Read the raw identity string from ``/api/version`` (then ``/api/v1/info``).

    ``original`` wins over ``hostname``; the info endpoint is only asked
    when the version payload carries neither.  May return ``""``.
    """
    version = Version.from_payload(decode_json("version", client.fetch("version", target)))
    identity = version.original or version.hostname
    if identity:
        return identity
    info = Info.from_payload(decode_json("v1/info", client.fetch("v1/info", target)))
    return info.hostname


def classify(target: TargetConfig, client: EndpointClient) -> Classification:
    """Determine the firmware family of *target*.

    Raises:
        UnknownFamily: If the declared or probed model is not recognised.
        NetworkError: If probing could not reach the printer.
        DecodeError: If a probe returned an unexpected payload.
    """
    if target.declared_type:
        model = resolve_model(target.declared_type)
        return Classification(model=model, family=family_for(model))

    model = resolve_model(probe_identity(target, client))
    logger.debug("%s detected for %s (%s)", model, target.address, target.name)
    return Classification(model=model, family=family_for(model), probed=True)
