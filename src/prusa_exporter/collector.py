"""One collection pass over every configured printer.

Each target is scraped in its own worker thread.  A worker buffers its
observations and only writes them to the shared registry once the target
is finished, so a printer that fails halfway through contributes exactly
one ``prusa_up 0`` sample and nothing else.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Optional, TypeVar

import requests

from prusa_exporter import metrics
from prusa_exporter.config import TargetConfig
from prusa_exporter.metrics import MetricsRegistry
from prusa_exporter.printers.base import (
    FirmwareFamily,
    Info,
    Job,
    NotSupported,
    PrinterError,
    PrinterFacade,
    PrinterTelemetry,
    Status,
    StorageFolder,
    Version,
)
from prusa_exporter.printers.client import EndpointClient
from prusa_exporter.printers.prusalink import new_printer

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# Filament printers; everything else here is resin.
_FDM_FAMILIES = frozenset({FirmwareFamily.BUDDY, FirmwareFamily.EINSY})

Observation = tuple[str, float, tuple[str, ...]]
SessionFactory = Callable[[], requests.Session]


@dataclass(frozen=True)
class TargetResult:
    """Outcome of scraping one target."""

    address: str
    name: str
    model: str
    up: bool
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


def run_per_target(
    targets: Sequence[TargetConfig],
    query_fn: Callable[[TargetConfig], _T],
    error_fn: Callable[[TargetConfig, Exception], _T],
) -> list[_T]:
    """Run *query_fn* for every target, one thread per target.

    Blocks until every target is finished.  Anything *query_fn* raises is
    turned into a result by *error_fn*; it never reaches the caller or a
    sibling target.

    Returns:
        One result per target, in completion order.
    """
    if not targets:
        return []

    results: list[_T] = []
    with ThreadPoolExecutor(max_workers=len(targets), thread_name_prefix="scrape") as pool:
        future_to_target = {pool.submit(query_fn, target): target for target in targets}
        for future in as_completed(future_to_target):
            target = future_to_target[future]
            try:
                results.append(future.result())
            except Exception as exc:
                results.append(error_fn(target, exc))
    return results


# ---------------------------------------------------------------------------
# Per-target scrape
# ---------------------------------------------------------------------------


class _Observations:
    """Per-target buffer of ``(metric, value, labels)`` triples."""

    def __init__(self) -> None:
        self.items: list[Observation] = []

    def add(self, metric: str, value: float, labels: Sequence[str]) -> None:
        self.items.append((metric, float(value), tuple(labels)))


def _down(target: TargetConfig, model: str, exc: Exception) -> tuple[TargetResult, list[Observation]]:
    labels = (target.address, model, target.name)
    result = TargetResult(target.address, target.name, model, up=False, error=str(exc))
    return result, [(metrics.UP, 0.0, labels)]


def _fetch_required(endpoint: str, fetch: Callable[[], _T], printer: PrinterFacade) -> _T:
    try:
        return fetch()
    except PrinterError as exc:
        logger.error("Error while scraping %s endpoint at %s - %s", endpoint, printer.address, exc)
        raise


def _fetch_optional(endpoint: str, fetch: Callable[[], _T], printer: PrinterFacade) -> Optional[_T]:
    try:
        return fetch()
    except NotSupported:
        logger.debug("%s endpoint not available on %s", endpoint, printer.address)
    except PrinterError as exc:
        logger.warning("Error while scraping %s endpoint at %s - %s", endpoint, printer.address, exc)
    return None


def scrape_target(target: TargetConfig, client: EndpointClient) -> tuple[TargetResult, list[Observation]]:
    """Scrape one printer and return its result plus buffered observations.

    Never raises: classification failures, required-endpoint failures and
    unexpected errors all produce a single ``prusa_up 0`` observation.
    """
    try:
        printer = new_printer(target, client)
    except PrinterError as exc:
        logger.error("Error while creating printer at %s - %s", target.address, exc)
        return _down(target, target.declared_type, exc)
    except Exception as exc:
        logger.exception("Unexpected error while creating printer at %s", target.address)
        return _down(target, target.declared_type, exc)

    logger.debug("Printer scraping at %s", printer.address)
    try:
        job = _fetch_required("job", printer.get_job, printer)
        telemetry = _fetch_required("printer", printer.get_printer_telemetry, printer)
        files = _fetch_required("files", printer.get_files, printer)
        version = _fetch_required("version", printer.get_version, printer)
        observations = _build_observations(printer, job, telemetry, files, version)
    except PrinterError as exc:
        return _down(target, printer.model, exc)
    except Exception as exc:
        logger.exception("Unexpected error while scraping %s", printer.address)
        return _down(target, printer.model, exc)

    logger.debug("Scraping done at %s", printer.address)
    return TargetResult(target.address, target.name, printer.model, up=True), observations.items


def _build_observations(
    printer: PrinterFacade,
    job: Job,
    telemetry: PrinterTelemetry,
    files: list[StorageFolder],
    version: Version,
) -> _Observations:
    obs = _Observations()
    labels = printer.metric_labels

    if printer.family in _FDM_FAMILIES:
        _emit_motion(obs, printer, job, telemetry)

        status = _fetch_optional("status", printer.get_status, printer)
        if status is not None:
            _emit_status(obs, printer, job, status)

        info = _fetch_optional("info", printer.get_info, printer)
        if info is not None:
            _emit_info(obs, printer, job, version, info)

        settings = _fetch_optional("settings", printer.get_settings, printer)
        if settings is not None:
            obs.add(metrics.FARM_MODE, settings.farm_mode, labels(job))

        cameras = _fetch_optional("cameras", printer.get_cameras, printer)
        for camera in cameras or []:
            obs.add(
                metrics.CAMERAS,
                camera.connected,
                labels(job, camera.camera_id, camera.name, camera.resolution),
            )

        storage = _fetch_optional("storage", printer.get_storage, printer)
        for entry in storage or []:
            obs.add(metrics.STORAGE_FREE, entry.free_space, labels(job, entry.name))

        if printer.family is FirmwareFamily.EINSY:
            for folder in files:
                obs.add(metrics.FILES, folder.child_count, labels(job, folder.display))

    if printer.family is FirmwareFamily.SL:
        _emit_resin(obs, printer, job, telemetry)

    obs.add(metrics.BED_TEMP, telemetry.bed.actual, labels(job))
    obs.add(metrics.BED_TEMP_TARGET, telemetry.bed.target, labels(job))
    obs.add(metrics.BED_TEMP_OFFSET, telemetry.bed.offset, labels(job))
    obs.add(metrics.TOOL_TEMP, telemetry.tool0.actual, labels(job, "0"))
    obs.add(metrics.TOOL_TEMP_TARGET, telemetry.tool0.target, labels(job, "0"))
    obs.add(metrics.TOOL_TEMP_OFFSET, telemetry.tool0.offset, labels(job, "0"))

    ordinal, state_text = printer.get_state_label(telemetry)
    obs.add(metrics.STATUS, ordinal, labels(job, state_text))
    obs.add(metrics.JOB_INFO, 1, labels(job, str(job.job_id)))

    obs.add(metrics.UP, 1, printer.base_labels())
    return obs


def _emit_motion(obs: _Observations, printer: PrinterFacade, job: Job, telemetry: PrinterTelemetry) -> None:
    labels = printer.metric_labels
    obs.add(metrics.PRINT_SPEED, telemetry.print_speed / 100, labels(job))
    obs.add(metrics.PRINT_TIME, job.time_elapsed, labels(job))
    obs.add(metrics.PRINT_TIME_REMAINING, job.time_remaining, labels(job))
    obs.add(metrics.PRINT_PROGRESS, job.progress, labels(job))
    # Firmware reports " - " (or similar) when nothing is loaded.
    obs.add(metrics.MATERIAL, "-" not in telemetry.material, labels(job, telemetry.material))
    obs.add(metrics.AXIS, telemetry.axis_x, labels(job, "x"))
    obs.add(metrics.AXIS, telemetry.axis_y, labels(job, "y"))
    obs.add(metrics.AXIS, telemetry.axis_z, labels(job, "z"))


def _emit_status(obs: _Observations, printer: PrinterFacade, job: Job, status: Status) -> None:
    for fan, rpm in status.fans.items():
        obs.add(metrics.FAN_SPEED, rpm, printer.metric_labels(job, fan))
    obs.add(metrics.FLOW, status.flow / 100, printer.metric_labels(job))


def _emit_info(obs: _Observations, printer: PrinterFacade, job: Job, version: Version, info: Info) -> None:
    obs.add(
        metrics.INFO,
        1,
        printer.metric_labels(
            job,
            version.api,
            version.server,
            version.text,
            info.name,
            info.location,
            info.serial,
            info.hostname,
        ),
    )
    obs.add(metrics.NOZZLE_SIZE, info.nozzle_diameter / 1000, printer.metric_labels(job))
    if printer.family is FirmwareFamily.BUDDY:
        obs.add(metrics.MMU, info.mmu, printer.metric_labels(job))


def _emit_resin(obs: _Observations, printer: PrinterFacade, job: Job, telemetry: PrinterTelemetry) -> None:
    labels = printer.metric_labels
    obs.add(metrics.COVER, telemetry.cover_closed, labels(job))
    for fan, rpm in telemetry.fans.items():
        obs.add(metrics.FAN_SPEED, rpm, labels(job, fan))
    obs.add(metrics.AMBIENT_TEMP, telemetry.ambient_temp, labels(job))
    obs.add(metrics.CPU_TEMP, telemetry.cpu_temp, labels(job))
    obs.add(metrics.UV_TEMP, telemetry.uv_led_temp, labels(job))
    obs.add(metrics.CHAMBER_TEMP, telemetry.chamber.actual, labels(job))
    obs.add(metrics.CHAMBER_TEMP_TARGET, telemetry.chamber.target, labels(job))
    obs.add(metrics.CHAMBER_TEMP_OFFSET, telemetry.chamber.offset, labels(job))


# ---------------------------------------------------------------------------
# Pass
# ---------------------------------------------------------------------------


def _flush(registry: MetricsRegistry, observations: Sequence[Observation]) -> None:
    """Write a target's *observations* into *registry*, all or nothing.

    Every metric name, label set and value is checked before the first
    write, so a bad observation leaves the registry untouched.
    """
    checked = []
    for metric, value, labels in observations:
        gauge = registry.gauge(metric)
        if len(labels) != len(gauge.labels):
            raise ValueError(f"{metric} expects {len(gauge.labels)} label values, got {len(labels)}")
        checked.append((gauge, float(value), labels))
    for gauge, value, labels in checked:
        gauge.set(value, labels)


def collect_all(
    targets: Sequence[TargetConfig],
    registry: MetricsRegistry,
    *,
    timeout: float,
    session_factory: Optional[SessionFactory] = None,
) -> list[TargetResult]:
    """Scrape every target concurrently into *registry*.

    Args:
        targets: Printers to scrape.
        registry: Sink for the observations; normally a fresh one from
            :func:`prusa_exporter.metrics.create_registry`.
        timeout: Per-HTTP-call timeout in seconds.
        session_factory: Builds the :class:`requests.Session` of each
            target's client.  Defaults to a plain session.

    Returns:
        One :class:`TargetResult` per target, in completion order.
    """
    started = time.monotonic()
    logger.debug("Collection pass started for %d target(s)", len(targets))

    def _query(target: TargetConfig) -> TargetResult:
        session = session_factory() if session_factory is not None else None
        client = EndpointClient(timeout, session=session)
        try:
            result, observations = scrape_target(target, client)
        finally:
            client.close()
        _flush(registry, observations)
        return result

    def _error(target: TargetConfig, exc: Exception) -> TargetResult:
        logger.error("Scrape worker for %s failed - %s", target.address, exc)
        registry.gauge(metrics.UP).set(0, (target.address, target.declared_type, target.name))
        return TargetResult(target.address, target.name, target.declared_type, up=False, error=str(exc))

    results = run_per_target(targets, _query, _error)

    elapsed = time.monotonic() - started
    registry.gauge(metrics.COLLECT_DURATION).set(elapsed)
    logger.debug(
        "Collection pass finished in %.3fs: %d/%d up",
        elapsed,
        sum(1 for r in results if r.up),
        len(results),
    )
    return results
