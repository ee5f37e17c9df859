from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("prusa.yml")

DEFAULTS: dict[str, Any] = {
    "scrape_timeout": 10.0,
    "host": "127.0.0.1",
    "port": 10009,
    "log_level": "INFO",
}

ENV_CONFIG = "PRUSA_EXPORTER_CONFIG"
ENV_SCRAPE_TIMEOUT = "PRUSA_EXPORTER_SCRAPE_TIMEOUT"
ENV_HOST = "PRUSA_EXPORTER_HOST"
ENV_PORT = "PRUSA_EXPORTER_PORT"
ENV_LOG_LEVEL = "PRUSA_EXPORTER_LOG_LEVEL"


class ConfigError(ValueError):
    """The configuration file or an override is unusable."""


@dataclass(frozen=True)
class TargetConfig:
    """One printer to scrape.

    ``declared_type`` is a model code such as ``"MK4"``; when empty the
    model is detected from the printer at scrape time.
    """

    address: str
    name: str = ""
    declared_type: str = ""
    api_key: str = ""
    username: str = ""
    password: str = field(default="", repr=False)

    @property
    def uses_api_key(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class ExporterConfig:
    targets: tuple[TargetConfig, ...] = ()
    scrape_timeout: float = DEFAULTS["scrape_timeout"]
    host: str = DEFAULTS["host"]
    port: int = DEFAULTS["port"]
    log_level: str = DEFAULTS["log_level"]


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------


def parse_int_env(name: str, default: int) -> int:
    """Read an integer environment variable, keeping *default* if unusable."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using %d", name, raw, default)
        return default


def parse_float_env(name: str, default: float) -> float:
    """Read a float environment variable, keeping *default* if unusable."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number for %s=%r, using %s", name, raw, default)
        return default


# ---------------------------------------------------------------------------
# File parsing
# ---------------------------------------------------------------------------


def normalize_address(address: str) -> str:
    """Strip a leading ``http://`` and trailing slashes from *address*."""
    address = address.strip()
    if address.lower().startswith("http://"):
        address = address[len("http://"):]
    return address.rstrip("/")


def _read_document(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _printer_entries(section: Any) -> list[Any]:
    """Flatten the ``printers`` section; groups keep document order."""
    if section is None:
        return []
    if isinstance(section, list):
        return section
    if isinstance(section, dict):
        entries: list[Any] = []
        for group, items in section.items():
            if items is None:
                continue
            if not isinstance(items, list):
                raise ConfigError(f"printers.{group} must be a list")
            entries.extend(items)
        return entries
    raise ConfigError("printers must be a list or a mapping of lists")


def _str_value(entry: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = entry.get(key)
        if value is not None:
            return str(value).strip()
    return ""


def parse_targets(section: Any) -> tuple[TargetConfig, ...]:
    """Build :class:`TargetConfig` objects from the ``printers`` section.

    Raises:
        ConfigError: On a malformed entry, a missing address or a duplicate
            address.
    """
    targets: list[TargetConfig] = []
    seen: set[str] = set()
    for index, entry in enumerate(_printer_entries(section)):
        if not isinstance(entry, dict):
            raise ConfigError(f"printer #{index} must be a mapping")
        address = normalize_address(_str_value(entry, "address"))
        if not address:
            raise ConfigError(f"printer #{index} has no address")
        if address in seen:
            raise ConfigError(f"printer {address} is configured twice")
        seen.add(address)

        target = TargetConfig(
            address=address,
            name=_str_value(entry, "name"),
            declared_type=_str_value(entry, "type"),
            api_key=_str_value(entry, "apikey", "api_key"),
            username=_str_value(entry, "username"),
            password=_str_value(entry, "password", "pass"),
        )
        if not target.uses_api_key and not (target.username or target.password):
            logger.warning("Printer %s has neither an API key nor digest credentials", address)
        targets.append(target)
    return tuple(targets)


def _validate(timeout: float, port: int) -> None:
    if timeout <= 0:
        raise ConfigError(f"scrape_timeout must be positive, got {timeout}")
    if not 1 <= port <= 65535:
        raise ConfigError(f"port must be between 1 and 65535, got {port}")


def _coerce(value: Any, kind: type, key: str) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"exporter.{key} is not a valid {kind.__name__}: {value!r}") from exc


def load_config(
    config_path: str | os.PathLike[str] | None = None,
    *,
    scrape_timeout: float | None = None,
    host: str | None = None,
    port: int | None = None,
    log_level: str | None = None,
) -> ExporterConfig:
    """Resolve the exporter configuration.

    Priority (highest first):
        1. Explicit parameters (CLI flags).
        2. ``PRUSA_EXPORTER_*`` environment variables.
        3. The YAML file at *config_path*, else ``$PRUSA_EXPORTER_CONFIG``,
           else ``./prusa.yml``.
        4. Built-in :data:`DEFAULTS`.

    Raises:
        ConfigError: If the file is missing or invalid, or a resolved value
            is out of range.
    """
    path = Path(config_path or os.environ.get(ENV_CONFIG) or DEFAULT_CONFIG_PATH)
    document = _read_document(path)

    exporter = document.get("exporter") or {}
    if not isinstance(exporter, dict):
        raise ConfigError("exporter must be a mapping")

    settings: dict[str, Any] = dict(DEFAULTS)
    for key, kind in (("scrape_timeout", float), ("host", str), ("port", int), ("log_level", str)):
        if exporter.get(key) is not None:
            settings[key] = _coerce(exporter[key], kind, key)

    settings["scrape_timeout"] = parse_float_env(ENV_SCRAPE_TIMEOUT, settings["scrape_timeout"])
    settings["port"] = parse_int_env(ENV_PORT, settings["port"])
    settings["host"] = os.environ.get(ENV_HOST) or settings["host"]
    settings["log_level"] = os.environ.get(ENV_LOG_LEVEL) or settings["log_level"]

    if scrape_timeout is not None:
        settings["scrape_timeout"] = float(scrape_timeout)
    if host is not None:
        settings["host"] = host
    if port is not None:
        settings["port"] = int(port)
    if log_level is not None:
        settings["log_level"] = log_level

    _validate(settings["scrape_timeout"], settings["port"])

    config = ExporterConfig(
        targets=parse_targets(document.get("printers")),
        scrape_timeout=settings["scrape_timeout"],
        host=settings["host"],
        port=settings["port"],
        log_level=str(settings["log_level"]).upper(),
    )
    logger.debug("Loaded %d printer(s) from %s", len(config.targets), path)
    return config
