"""HTTP exposition of the exporter metrics via FastAPI.

Every ``GET /metrics`` runs a full collection pass into a fresh registry,
so the response always reflects live printer state and nothing is kept
between scrapes::

    GET /metrics   -> Prometheus text format
    GET /health    -> {"status": "ok", "version": "...", "targets": N}
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from prusa_exporter import __version__
from prusa_exporter.collector import SessionFactory, collect_all
from prusa_exporter.config import ExporterConfig
from prusa_exporter.metrics import create_registry

logger = logging.getLogger(__name__)

CONTENT_TYPE_LATEST = "text/plain; version=0.0.4; charset=utf-8"


def render_metrics(config: ExporterConfig, session_factory: Optional[SessionFactory] = None) -> str:
    """Run one pass over ``config.targets`` and return the exposition text."""
    registry = create_registry()
    collect_all(
        config.targets,
        registry,
        timeout=config.scrape_timeout,
        session_factory=session_factory,
    )
    return registry.export_prometheus()


def create_app(config: ExporterConfig, *, session_factory: Optional[SessionFactory] = None) -> FastAPI:
    """Create the FastAPI application serving ``/metrics`` and ``/health``."""
    app = FastAPI(
        title="Prusa exporter",
        description="Prometheus exporter for PrusaLink printers",
        version=__version__,
    )

    # Plain ``def`` so the blocking pass runs in the threadpool.
    @app.get("/metrics", response_class=PlainTextResponse)
    def metrics_endpoint() -> PlainTextResponse:
        body = render_metrics(config, session_factory)
        return PlainTextResponse(body, media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health() -> dict:
        """Server health check."""
        return {"status": "ok", "version": __version__, "targets": len(config.targets)}

    return app


def run_server(config: ExporterConfig) -> None:
    """Start the metrics server (blocking)."""
    import uvicorn

    app = create_app(config)
    logger.info(
        "Starting prusa-exporter on %s:%d for %d printer(s)",
        config.host,
        config.port,
        len(config.targets),
    )
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)
