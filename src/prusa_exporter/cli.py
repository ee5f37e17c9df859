"""prusa-exporter command line.

Usage:
    prusa-exporter [--config PATH] [--log-level LEVEL] collect [--json]
    prusa-exporter [--config PATH] [--log-level LEVEL] detect [--json]
    prusa-exporter [--config PATH] [--log-level LEVEL] probe [--json]
    prusa-exporter [--config PATH] [--log-level LEVEL] serve [--host H] [--port P]
"""

from __future__ import annotations

import json
import sys
from typing import Any

import click

from prusa_exporter import __version__
from prusa_exporter.collector import collect_all, run_per_target
from prusa_exporter.config import ConfigError, ExporterConfig, TargetConfig, load_config
from prusa_exporter.log_config import configure_logging
from prusa_exporter.metrics import create_registry
from prusa_exporter.printers.base import PrinterError
from prusa_exporter.printers.classifier import classify
from prusa_exporter.printers.client import EndpointClient
from prusa_exporter.server import run_server

SUCCESS = 0
NO_TARGET_UP = 1
CONFIG_ERROR = 2

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _load(ctx: click.Context, **overrides: Any) -> ExporterConfig:
    """Load configuration and set up logging, exiting 2 on a bad config."""
    try:
        config = load_config(ctx.obj["config_path"], log_level=ctx.obj["log_level"], **overrides)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(CONFIG_ERROR)
    configure_logging(config.log_level)
    return config


def _in_config_order(targets: tuple[TargetConfig, ...], rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    order = {target.address: index for index, target in enumerate(targets)}
    return sorted(rows, key=lambda row: order.get(row["address"], len(order)))


# ------------------------------------------------------------------
# CLI group
# ------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML config file (default: $PRUSA_EXPORTER_CONFIG or ./prusa.yml).",
)
@click.option("--log-level", default=None, help="Log level (debug, info, warning, error).")
@click.version_option(version=__version__, prog_name="prusa-exporter")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """Prometheus exporter for PrusaLink printers."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


# ------------------------------------------------------------------
# collect
# ------------------------------------------------------------------


@cli.command()
@click.option("--json", "json_mode", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def collect(ctx: click.Context, json_mode: bool) -> None:
    """Run one collection pass and print the metrics."""
    config = _load(ctx)
    registry = create_registry()
    results = collect_all(config.targets, registry, timeout=config.scrape_timeout)

    if json_mode:
        click.echo(json.dumps(registry.export_dict(), indent=2, sort_keys=True))
    else:
        click.echo(registry.export_prometheus(), nl=False)

    if not any(result.up for result in results):
        sys.exit(NO_TARGET_UP)


# ------------------------------------------------------------------
# detect
# ------------------------------------------------------------------


@cli.command()
@click.option("--json", "json_mode", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def detect(ctx: click.Context, json_mode: bool) -> None:
    """Show the model and firmware family of every printer."""
    config = _load(ctx)

    def _query(target: TargetConfig) -> dict[str, Any]:
        client = EndpointClient(config.scrape_timeout)
        try:
            result = classify(target, client)
        except PrinterError as exc:
            return {"address": target.address, "name": target.name, "model": None, "family": None, "error": str(exc)}
        finally:
            client.close()
        return {
            "address": target.address,
            "name": target.name,
            "model": result.model,
            "family": result.family.value,
            "error": None,
        }

    def _error(target: TargetConfig, exc: Exception) -> dict[str, Any]:
        return {"address": target.address, "name": target.name, "model": None, "family": None, "error": str(exc)}

    rows = _in_config_order(config.targets, run_per_target(config.targets, _query, _error))

    if json_mode:
        click.echo(json.dumps(rows, indent=2))
        return
    for row in rows:
        if row["error"]:
            click.echo(f"{row['address']}\t{row['name']}\terror: {row['error']}")
        else:
            click.echo(f"{row['address']}\t{row['name']}\t{row['model']}\t{row['family']}")


# ------------------------------------------------------------------
# probe
# ------------------------------------------------------------------


@cli.command()
@click.option("--json", "json_mode", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def probe(ctx: click.Context, json_mode: bool) -> None:
    """Check that every printer's web interface answers."""
    config = _load(ctx)

    def _query(target: TargetConfig) -> dict[str, Any]:
        client = EndpointClient(config.scrape_timeout)
        try:
            return {"address": target.address, "name": target.name, "reachable": client.probe(target)}
        finally:
            client.close()

    def _error(target: TargetConfig, exc: Exception) -> dict[str, Any]:
        return {"address": target.address, "name": target.name, "reachable": False}

    rows = _in_config_order(config.targets, run_per_target(config.targets, _query, _error))

    if json_mode:
        click.echo(json.dumps(rows, indent=2))
        return
    for row in rows:
        state = "reachable" if row["reachable"] else "unreachable"
        click.echo(f"{row['address']}\t{row['name']}\t{state}")


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Listen address (default 127.0.0.1).")
@click.option("--port", type=int, default=None, help="Listen port (default 10009).")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Serve /metrics for Prometheus."""
    config = _load(ctx, host=host, port=port)
    run_server(config)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
