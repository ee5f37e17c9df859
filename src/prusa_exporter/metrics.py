from __future__ import annotations

import math
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

BASE_LABELS: list[str] = ["printer_address", "printer_model", "printer_name"]
JOB_LABELS: list[str] = BASE_LABELS + ["printer_job_name", "printer_job_path"]


@dataclass
class Gauge:
    """Gauge keyed by an ordered tuple of label values.

    Writers from several collection threads may hit the same gauge; a later
    ``set`` with the same label values replaces the earlier sample.
    """

    name: str
    help: str
    labels: list[str] = field(default_factory=list)
    _values: dict[tuple[str, ...], float] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def set(self, value: float, label_values: Sequence[str] = ()) -> None:
        """Set the sample for *label_values* to *value*."""
        key = self._validate_labels(label_values)
        with self._lock:
            self._values[key] = float(value)

    def get(self, label_values: Sequence[str] = ()) -> Optional[float]:
        """Return the sample for *label_values*, or None if never set."""
        key = self._validate_labels(label_values)
        with self._lock:
            return self._values.get(key)

    def samples(self) -> dict[tuple[str, ...], float]:
        """Snapshot of all samples."""
        with self._lock:
            return dict(self._values)

    def _validate_labels(self, label_values: Sequence[str]) -> tuple[str, ...]:
        if len(label_values) != len(self.labels):
            raise ValueError(
                f"{self.name} expects {len(self.labels)} label values "
                f"({', '.join(self.labels)}), got {len(label_values)}"
            )
        return tuple(str(value) for value in label_values)

    def export(self) -> dict[str, Any]:
        """Export metric data."""
        with self._lock:
            return {
                "type": "gauge",
                "name": self.name,
                "help": self.help,
                "labels": self.labels,
                "values": {
                    self._format_labels(label_tuple): value
                    for label_tuple, value in self._values.items()
                },
            }

    def _format_labels(self, label_tuple: tuple[str, ...]) -> str:
        if not label_tuple:
            return ""
        return ",".join(f"{k}={v}" for k, v in zip(self.labels, label_tuple))

    def _exposition_labels(self, label_tuple: tuple[str, ...]) -> str:
        if not label_tuple:
            return ""
        pairs = ",".join(
            f'{k}="{_escape_label(v)}"' for k, v in zip(self.labels, label_tuple)
        )
        return f"{{{pairs}}}"


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


class MetricsRegistry:
    """Thread-safe registry for all metrics."""

    def __init__(self) -> None:
        self._metrics: dict[str, Gauge] = {}
        self._lock = threading.Lock()

    def register(self, metric: Gauge) -> Gauge:
        """Register a metric and return it."""
        with self._lock:
            if metric.name in self._metrics:
                raise ValueError(f"Metric {metric.name} already registered")
            self._metrics[metric.name] = metric
        return metric

    def get_metric(self, name: str) -> Optional[Gauge]:
        """Get a metric by name."""
        with self._lock:
            return self._metrics.get(name)

    def gauge(self, name: str) -> Gauge:
        """Like :meth:`get_metric` but raises ``KeyError`` for unknown names."""
        metric = self.get_metric(name)
        if metric is None:
            raise KeyError(name)
        return metric

    def export_dict(self) -> dict[str, Any]:
        """Export all metrics as a dictionary."""
        with self._lock:
            return {name: metric.export() for name, metric in self._metrics.items()}

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format (0.0.4).

        Gauges without any sample are left out entirely.
        """
        lines = []

        with self._lock:
            metrics = sorted(self._metrics.items())

        for name, metric in metrics:
            samples = metric.samples()
            if not samples:
                continue
            lines.append(f"# HELP {name} {metric.help}")
            lines.append(f"# TYPE {name} gauge")
            for label_tuple, value in sorted(samples.items()):
                lines.append(
                    f"{name}{metric._exposition_labels(label_tuple)} {_format_value(value)}"
                )

        return "\n".join(lines) + "\n" if lines else ""


# ---------------------------------------------------------------------------
# Metric names
# ---------------------------------------------------------------------------

UP = "prusa_up"
BED_TEMP = "prusa_bed_temperature_celsius"
BED_TEMP_TARGET = "prusa_bed_target_temperature_celsius"
BED_TEMP_OFFSET = "prusa_bed_offset_temperature_celsius"
TOOL_TEMP = "prusa_tool_temperature_celsius"
TOOL_TEMP_TARGET = "prusa_tool_target_temperature_celsius"
TOOL_TEMP_OFFSET = "prusa_tool_offset_temperature_celsius"
CHAMBER_TEMP = "prusa_chamber_temperature_celsius"
CHAMBER_TEMP_TARGET = "prusa_chamber_target_temperature_celsius"
CHAMBER_TEMP_OFFSET = "prusa_chamber_offset_temperature_celsius"
STATUS = "prusa_status_info"
JOB_INFO = "prusa_job_info"
PRINT_SPEED = "prusa_print_speed_ratio"
PRINT_TIME = "prusa_print_time_seconds"
PRINT_TIME_REMAINING = "prusa_printing_time_remaining_seconds"
PRINT_PROGRESS = "prusa_printing_progress"
MATERIAL = "prusa_material_info"
AXIS = "prusa_axis"
FAN_SPEED = "prusa_fan_speed_rpm"
FLOW = "prusa_print_flow_ratio"
INFO = "prusa_info"
NOZZLE_SIZE = "prusa_nozzle_size_meters"
MMU = "prusa_mmu"
FARM_MODE = "prusa_farm_mode"
CAMERAS = "prusa_cameras_info"
FILES = "prusa_files_count"
STORAGE_FREE = "prusa_storage_free_bytes"
COVER = "prusa_cover_status"
AMBIENT_TEMP = "prusa_ambient_temperature_celsius"
CPU_TEMP = "prusa_cpu_temperature_celsius"
UV_TEMP = "prusa_uv_temperature_celsius"
COLLECT_DURATION = "prusa_exporter_collect_duration_seconds"

# name, help, labels
_DEFINITIONS: tuple[tuple[str, str, list[str]], ...] = (
    (UP, "Return information about online printers. If printer is registered as offline then returned value is 0.", BASE_LABELS),
    (BED_TEMP, "Current temp of printer bed in Celsius", JOB_LABELS),
    (BED_TEMP_TARGET, "Target bed temp", JOB_LABELS),
    (BED_TEMP_OFFSET, "Offset bed temp", JOB_LABELS),
    (TOOL_TEMP, "Status of the printer tool temp", JOB_LABELS + ["tool"]),
    (TOOL_TEMP_TARGET, "Target tool temp", JOB_LABELS + ["tool"]),
    (TOOL_TEMP_OFFSET, "Offset tool temp", JOB_LABELS + ["tool"]),
    (CHAMBER_TEMP, "Status of the printer chamber temp", JOB_LABELS),
    (CHAMBER_TEMP_TARGET, "Target chamber temp", JOB_LABELS),
    (CHAMBER_TEMP_OFFSET, "Offset chamber temp", JOB_LABELS),
    (STATUS, "Returns information status of printer.", JOB_LABELS + ["printer_state"]),
    (JOB_INFO, "Returns information about current job.", JOB_LABELS + ["printer_job_id"]),
    (PRINT_SPEED, "Current setting of printer speed in values from 0.0 - 1.0", JOB_LABELS),
    (PRINT_TIME, "Returns information about current print time.", JOB_LABELS),
    (PRINT_TIME_REMAINING, "Returns time that remains for completion of current print", JOB_LABELS),
    (PRINT_PROGRESS, "Returns information about completion of current print in percents", JOB_LABELS),
    (MATERIAL, "Returns information about loaded filament. Returns 0 if there is no loaded filament", JOB_LABELS + ["printer_filament"]),
    (AXIS, "Returns information about position of axis.", JOB_LABELS + ["printer_axis"]),
    (FAN_SPEED, "Returns information about speed of fans in rpm.", JOB_LABELS + ["fan"]),
    (FLOW, "Returns information about of filament flow in ratio (0.0 - 1.0).", JOB_LABELS),
    (
        INFO,
        "Returns information about printer.",
        JOB_LABELS + [
            "api_version",
            "server_version",
            "version_text",
            "prusalink_name",
            "printer_location",
            "serial_number",
            "printer_hostname",
        ],
    ),
    (NOZZLE_SIZE, "Returns information about selected nozzle size.", JOB_LABELS),
    (MMU, "Returns information if MMU is enabled.", JOB_LABELS),
    (FARM_MODE, "Return if printer is set to farm mode", JOB_LABELS),
    (CAMERAS, "Return information about cameras", JOB_LABELS + ["camera_id", "camera_name", "camera_resolution"]),
    (FILES, "Number of files in storage", JOB_LABELS + ["printer_storage"]),
    (STORAGE_FREE, "Free space of the storage in bytes", JOB_LABELS + ["printer_storage"]),
    (COVER, "Status of the printer - 0 = open, 1 = closed", JOB_LABELS),
    (AMBIENT_TEMP, "Status of the printer ambient temp", JOB_LABELS),
    (CPU_TEMP, "Status of the printer cpu temp", JOB_LABELS),
    (UV_TEMP, "Status of the printer uv temp", JOB_LABELS),
    (COLLECT_DURATION, "Wall time of the last collection pass in seconds", []),
)


def create_registry() -> MetricsRegistry:
    """Return a fresh registry holding every exporter gauge, all empty."""
    registry = MetricsRegistry()
    for name, help_text, labels in _DEFINITIONS:
        registry.register(Gauge(name, help_text, labels=list(labels)))
    return registry
