"""Shared printer façade for the PrusaLink exporter.

Every firmware family (Buddy, Einsy, SL) speaks a dialect of the same
PrusaLink HTTP API.  Most endpoints have one wire shape across all
families, so they are implemented exactly once on :class:`PrinterFacade`.
Concrete subclasses in :mod:`prusa_exporter.printers.prusalink` only
override what actually differs: the job endpoint, the set of fans exposed
by ``GET /api/printer`` and the capability matrix.

All snapshots returned from here are fully populated: a field that the
printer omits (or reports as ``null``) takes the documented default
instead of raising, so an idle printer always yields a usable record.
"""

from __future__ import annotations

import enum
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from prusa_exporter.state import StateOrdinal, StatusFlags, reduce_state

if TYPE_CHECKING:
    from prusa_exporter.config import TargetConfig
    from prusa_exporter.printers.client import EndpointClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PrinterError(Exception):
    """Base exception for all printer-related errors.

    Carries the underlying exception (if any) as :attr:`cause` so callers
    can log the root failure without unwrapping ``__cause__`` chains.
    """

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class NetworkError(PrinterError):
    """Transport failure: timeout, refused connection, broken response."""

    def __init__(self, address: str, cause: Exception) -> None:
        super().__init__(f"Could not reach printer at {address}: {cause}", cause=cause)
        self.address = address


class DecodeError(PrinterError):
    """The printer answered, but not with the JSON we expect."""

    def __init__(self, endpoint: str, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(f"Unexpected payload from {endpoint}: {message}", cause=cause)
        self.endpoint = endpoint


class UnknownFamily(PrinterError):
    """The model identity does not map to any supported firmware family."""

    def __init__(self, model: str) -> None:
        super().__init__(f"Unknown printer model {model!r}")
        self.model = model


class NotSupported(PrinterError):
    """The endpoint does not exist for this firmware family.

    This is a capability gap, not a failure: callers skip the metric
    silently.
    """

    def __init__(self, operation: str, family: FirmwareFamily) -> None:
        super().__init__(f"{operation} is not available on {family.value} printers")
        self.operation = operation
        self.family = family


# ---------------------------------------------------------------------------
# Enums / capability matrix
# ---------------------------------------------------------------------------


class FirmwareFamily(enum.Enum):
    """Board / firmware category that decides the endpoint set."""

    BUDDY = "buddy"
    EINSY = "einsy"
    SL = "sl"


@dataclass(frozen=True)
class PrinterCapabilities:
    """Optional endpoints a family exposes beyond the common four."""

    status: bool = False
    info: bool = False
    settings: bool = False
    cameras: bool = False
    storage: bool = False


# ---------------------------------------------------------------------------
# Payload decoding
# ---------------------------------------------------------------------------


class _PayloadReader:
    """Typed, default-aware access into a decoded JSON object.

    Missing keys, ``null`` values and non-object intermediate nodes all
    resolve to the caller's default.  A present value of the wrong type is
    a :class:`DecodeError`.
    """

    def __init__(self, payload: Any, endpoint: str) -> None:
        self._payload = payload
        self._endpoint = endpoint

    def _walk(self, keys: tuple[str, ...]) -> Any:
        current = self._payload
        for key in keys:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current

    def _bad(self, keys: tuple[str, ...], expected: str, value: Any) -> DecodeError:
        return DecodeError(
            self._endpoint,
            f"{'.'.join(keys)} should be {expected}, got {type(value).__name__}",
        )

    def number(self, *keys: str, default: float = 0.0) -> float:
        value = self._walk(keys)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._bad(keys, "a number", value)
        return float(value)

    def integer(self, *keys: str, default: int = 0) -> int:
        return int(self.number(*keys, default=float(default)))

    def text(self, *keys: str, default: str = "") -> str:
        value = self._walk(keys)
        if value is None:
            return default
        if not isinstance(value, str):
            raise self._bad(keys, "a string", value)
        return value

    def flag(self, *keys: str, default: bool = False) -> bool:
        value = self._walk(keys)
        if value is None:
            return default
        if not isinstance(value, bool):
            raise self._bad(keys, "a boolean", value)
        return value

    def items(self, *keys: str) -> list[_PayloadReader]:
        value = self._walk(keys)
        if value is None:
            return []
        if not isinstance(value, list):
            raise self._bad(keys, "a list", value)
        return [_PayloadReader(item, self._endpoint) for item in value]

    def reader(self, *keys: str) -> _PayloadReader:
        return _PayloadReader(self._walk(keys), self._endpoint)


def decode_json(endpoint: str, body: bytes, *, allow_empty: bool = False) -> dict[str, Any]:
    """Decode *body* as a JSON object.

    With *allow_empty*, a blank body (HTTP 204) decodes to ``{}``.
    """
    if allow_empty and not body.strip():
        return {}
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise DecodeError(endpoint, "invalid JSON", cause=exc) from exc
    if not isinstance(data, dict):
        raise DecodeError(endpoint, f"expected an object, got {type(data).__name__}")
    return data


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Job:
    """Normalised job snapshot; all defaults mean "no job loaded"."""

    job_id: int = 0
    file_name: str = ""
    file_path: str = ""
    progress: float = 0.0
    time_elapsed: float = 0.0
    time_remaining: float = 0.0


@dataclass(frozen=True)
class Temperature:
    actual: float = 0.0
    target: float = 0.0
    offset: float = 0.0

    @classmethod
    def from_reader(cls, reader: _PayloadReader) -> Temperature:
        return cls(
            actual=reader.number("actual", default=0.0),
            target=reader.number("target", default=0.0),
            offset=reader.number("offset", default=0.0),
        )


@dataclass(frozen=True)
class PrinterTelemetry:
    """``GET /api/printer`` snapshot.

    :attr:`fans` only holds the fans the family reports on this endpoint
    (SL printers); Buddy/Einsy fan speeds come from :class:`Status`.
    """

    bed: Temperature = field(default_factory=Temperature)
    tool0: Temperature = field(default_factory=Temperature)
    chamber: Temperature = field(default_factory=Temperature)
    axis_x: float = 0.0
    axis_y: float = 0.0
    axis_z: float = 0.0
    print_speed: float = 0.0
    material: str = ""
    cover_closed: bool = False
    ambient_temp: float = 0.0
    cpu_temp: float = 0.0
    uv_led_temp: float = 0.0
    fans: Mapping[str, float] = field(default_factory=dict)
    state_text: str = ""
    flags: StatusFlags = field(default_factory=StatusFlags)

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        *,
        fan_keys: Mapping[str, str],
    ) -> PrinterTelemetry:
        reader = _PayloadReader(payload, "printer")
        temps = reader.reader("temperature")
        telemetry = reader.reader("telemetry")
        flags = reader.reader("state", "flags")
        return cls(
            bed=Temperature.from_reader(temps.reader("bed")),
            tool0=Temperature.from_reader(temps.reader("tool0")),
            chamber=Temperature.from_reader(temps.reader("chamber")),
            axis_x=telemetry.number("axis_x", default=0.0),
            axis_y=telemetry.number("axis_y", default=0.0),
            axis_z=telemetry.number("axis_z", default=0.0),
            print_speed=telemetry.number("print-speed", default=0.0),
            material=telemetry.text("material", default=""),
            cover_closed=telemetry.flag("cover_closed", default=False),
            ambient_temp=telemetry.number("ambient_temp", default=0.0),
            cpu_temp=telemetry.number("cpu_temp", default=0.0),
            uv_led_temp=telemetry.number("uv_led_temp", default=0.0),
            fans={fan: telemetry.number(key, default=0.0) for fan, key in fan_keys.items()},
            state_text=reader.text("state", "text", default=""),
            flags=StatusFlags(
                operational=flags.flag("operational"),
                prepared=flags.flag("prepared"),
                paused=flags.flag("paused"),
                printing=flags.flag("printing"),
                cancelling=flags.flag("cancelling"),
                pausing=flags.flag("pausing"),
                error=flags.flag("error"),
                sd_ready=flags.flag("sdReady"),
                closed_or_error=flags.flag("closedOrError"),
                closed_on_error=flags.flag("closedOnError"),
                ready=flags.flag("ready"),
                busy=flags.flag("busy"),
                finished=flags.flag("finished"),
            ),
        )


@dataclass(frozen=True)
class Status:
    """``GET /api/v1/status`` printer block."""

    state: str = ""
    flow: float = 0.0
    speed: float = 0.0
    fans: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Status:
        printer = _PayloadReader(payload, "v1/status").reader("printer")
        return cls(
            state=printer.text("state", default=""),
            flow=printer.number("flow", default=0.0),
            speed=printer.number("speed", default=0.0),
            fans={
                "hotend": printer.number("fan_hotend", default=0.0),
                "print": printer.number("fan_print", default=0.0),
            },
        )


@dataclass(frozen=True)
class Version:
    api: str = ""
    server: str = ""
    text: str = ""
    original: str = ""
    hostname: str = ""
    firmware: str = ""
    nozzle_diameter: float = 0.0

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Version:
        reader = _PayloadReader(payload, "version")
        return cls(
            api=reader.text("api", default=""),
            server=reader.text("server", default=""),
            text=reader.text("text", default=""),
            original=reader.text("original", default=""),
            hostname=reader.text("hostname", default=""),
            firmware=reader.text("firmware", default=""),
            nozzle_diameter=reader.number("nozzle_diameter", default=0.0),
        )


@dataclass(frozen=True)
class Info:
    name: str = ""
    location: str = ""
    serial: str = ""
    hostname: str = ""
    mmu: bool = False
    nozzle_diameter: float = 0.0  # millimetres

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Info:
        reader = _PayloadReader(payload, "v1/info")
        return cls(
            name=reader.text("name", default=""),
            location=reader.text("location", default=""),
            serial=reader.text("serial", default=""),
            hostname=reader.text("hostname", default=""),
            mmu=reader.flag("mmu", default=False),
            nozzle_diameter=reader.number("nozzle_diameter", default=0.0),
        )


@dataclass(frozen=True)
class Settings:
    farm_mode: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Settings:
        reader = _PayloadReader(payload, "settings")
        return cls(farm_mode=reader.flag("printer", "farm_mode", default=False))


@dataclass(frozen=True)
class Camera:
    camera_id: str = ""
    name: str = ""
    resolution: str = ""
    connected: bool = False


@dataclass(frozen=True)
class StorageFolder:
    """Top-level entry of ``GET /api/files`` with its direct child count."""

    name: str = ""
    display: str = ""
    path: str = ""
    child_count: int = 0


@dataclass(frozen=True)
class Storage:
    """One entry of ``GET /api/v1/storage``."""

    name: str = ""
    path: str = ""
    storage_type: str = ""
    free_space: float = 0.0
    read_only: bool = False
    available: bool = False


# ---------------------------------------------------------------------------
# Façade
# ---------------------------------------------------------------------------


class PrinterFacade(ABC):
    """Uniform view of one printer for the duration of a collection pass.

    Instances are cheap and short-lived: build one per target per pass via
    :func:`prusa_exporter.printers.prusalink.new_printer`, which resolves
    the model once and hands it in here.  Nothing is re-probed afterwards.

    Args:
        target: Configured printer.
        model: Resolved model code (``"MK4"``, ``"I3MK3S"``, ...).
        client: Endpoint client used for every call.
    """

    family: FirmwareFamily
    capabilities: PrinterCapabilities = PrinterCapabilities()
    # Fan label -> ``telemetry`` key on ``GET /api/printer``.
    telemetry_fans: Mapping[str, str] = {}

    def __init__(self, target: TargetConfig, model: str, client: EndpointClient) -> None:
        self._target = target
        self._model = model
        self._client = client

    # -- identity -------------------------------------------------------

    @property
    def target(self) -> TargetConfig:
        return self._target

    @property
    def address(self) -> str:
        return self._target.address

    @property
    def model(self) -> str:
        return self._model

    # -- HTTP -----------------------------------------------------------

    def _get_json(self, path: str, *, allow_empty: bool = False) -> dict[str, Any]:
        """GET ``/api/<path>`` and return the decoded JSON object."""
        body = self._client.fetch(path, self._target)
        return decode_json(path, body, allow_empty=allow_empty)

    def _require(self, supported: bool, operation: str) -> None:
        if not supported:
            raise NotSupported(operation, self.family)

    # -- common endpoints -----------------------------------------------

    @abstractmethod
    def get_job(self) -> Job:
        """Return the current job; the all-default :class:`Job` when idle.

        Raises:
            PrinterError: On transport or decoding failure.
        """

    def get_printer_telemetry(self) -> PrinterTelemetry:
        payload = self._get_json("printer")
        return PrinterTelemetry.from_payload(payload, fan_keys=self.telemetry_fans)

    def get_files(self) -> list[StorageFolder]:
        """List top-level storage folders with their direct child counts."""
        payload = self._get_json("files?recursive=true")
        folders: list[StorageFolder] = []
        for entry in _PayloadReader(payload, "files").items("files"):
            folders.append(
                StorageFolder(
                    name=entry.text("name", default=""),
                    display=entry.text("display", default=""),
                    path=entry.text("path", default=""),
                    child_count=len(entry.items("children")),
                )
            )
        return folders

    def get_version(self) -> Version:
        return Version.from_payload(self._get_json("version"))

    # -- optional endpoints ---------------------------------------------

    def get_status(self) -> Status:
        self._require(self.capabilities.status, "status")
        return Status.from_payload(self._get_json("v1/status"))

    def get_info(self) -> Info:
        self._require(self.capabilities.info, "info")
        return Info.from_payload(self._get_json("v1/info"))

    def get_settings(self) -> Settings:
        self._require(self.capabilities.settings, "settings")
        return Settings.from_payload(self._get_json("settings"))

    def get_cameras(self) -> list[Camera]:
        self._require(self.capabilities.cameras, "cameras")
        payload = self._get_json("v1/cameras")
        return [
            Camera(
                camera_id=entry.text("camera_id", default=""),
                name=entry.text("config", "name", default=""),
                resolution=entry.text("config", "resolution", default=""),
                connected=entry.flag("connected", default=False),
            )
            for entry in _PayloadReader(payload, "v1/cameras").items("camera_list")
        ]

    def get_storage(self) -> list[Storage]:
        self._require(self.capabilities.storage, "storage")
        payload = self._get_json("v1/storage")
        return [
            Storage(
                name=entry.text("name", default=""),
                path=entry.text("path", default=""),
                storage_type=entry.text("type", default=""),
                free_space=entry.number("free_space", default=0.0),
                read_only=entry.flag("read_only", default=False),
                available=entry.flag("available", default=False),
            )
            for entry in _PayloadReader(payload, "v1/storage").items("storage_list")
        ]

    # -- derived --------------------------------------------------------

    @staticmethod
    def get_state_label(telemetry: PrinterTelemetry) -> tuple[StateOrdinal, str]:
        """Return ``(ordinal, state text)`` for ``prusa_status_info``."""
        return reduce_state(telemetry.flags), telemetry.state_text

    # -- labels ---------------------------------------------------------

    def base_labels(self) -> tuple[str, str, str]:
        """``(address, model, name)`` - the label set of ``prusa_up``."""
        return (self._target.address, self._model, self._target.name)

    def metric_labels(self, job: Job, *extra: str) -> tuple[str, ...]:
        """Base labels, then job file name and path, then *extra*."""
        return (*self.base_labels(), job.file_name, job.file_path, *extra)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<{type(self).__name__} address={self.address!r} model={self._model!r}>"
