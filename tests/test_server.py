"""Tests for prusa_exporter.server - the FastAPI exposition endpoint."""

from __future__ import annotations

from unittest.mock import patch

import pytest
import requests
from fastapi.testclient import TestClient

from conftest import BUDDY_ADDRESS, SL_ADDRESS
from prusa_exporter import __version__
from prusa_exporter.config import ExporterConfig
from prusa_exporter.server import CONTENT_TYPE_LATEST, create_app, render_metrics, run_server


@pytest.fixture()
def config(buddy_target, sl_target):
    return ExporterConfig(targets=(buddy_target, sl_target), scrape_timeout=5)


@pytest.fixture()
def client(config):
    return TestClient(create_app(config))


class TestMetricsEndpoint:
    def test_exposition(self, serve_printer, client):
        serve_printer("buddy", BUDDY_ADDRESS)
        serve_printer("sl", SL_ADDRESS)

        resp = client.get("/metrics")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == CONTENT_TYPE_LATEST
        assert "# TYPE prusa_up gauge" in resp.text
        assert f'prusa_up{{printer_address="{BUDDY_ADDRESS}",printer_model="MK4",printer_name="mk4"}} 1' in resp.text
        assert "prusa_cover_status" in resp.text

    def test_down_printer_still_200(self, serve_printer, client):
        serve_printer("buddy", BUDDY_ADDRESS)
        serve_printer("sl", SL_ADDRESS, {"printer": requests.ConnectionError("refused")})

        resp = client.get("/metrics")

        assert resp.status_code == 200
        assert f'prusa_up{{printer_address="{SL_ADDRESS}",printer_model="SL1",printer_name="sl1"}} 0' in resp.text
        assert "prusa_cover_status" not in resp.text

    def test_fresh_pass_per_request(self, serve_printer, rsps, client):
        serve_printer("buddy", BUDDY_ADDRESS)
        serve_printer("sl", SL_ADDRESS)

        client.get("/metrics")
        first = len(rsps.calls)
        client.get("/metrics")

        assert len(rsps.calls) == 2 * first

    def test_no_targets(self):
        resp = TestClient(create_app(ExporterConfig())).get("/metrics")

        assert resp.status_code == 200
        assert "prusa_exporter_collect_duration_seconds" in resp.text
        assert "prusa_up" not in resp.text


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": __version__, "targets": 2}


class TestRenderMetrics:
    def test_uses_session_factory(self, serve_printer, config):
        serve_printer("buddy", BUDDY_ADDRESS)
        serve_printer("sl", SL_ADDRESS)
        made = []

        def _factory():
            session = requests.Session()
            made.append(session)
            return session

        render_metrics(config, session_factory=_factory)

        assert len(made) == 2


class TestRunServer:
    def test_passes_bind_address(self):
        config = ExporterConfig(host="0.0.0.0", port=9100)

        with patch("uvicorn.run") as run:
            run_server(config)

        _, kwargs = run.call_args
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["port"] == 9100
        assert kwargs["log_config"] is None
