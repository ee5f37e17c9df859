"""Shared fixtures for the prusa-exporter test suite.

Printer payloads live under ``tests/fixtures/<family>/`` and mirror the
API paths they answer: ``v1/job.json`` is served for ``GET /api/v1/job``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest
import responses

from prusa_exporter.config import TargetConfig

FIXTURES = Path(__file__).parent / "fixtures"

BUDDY_ADDRESS = "192.168.1.10"
EINSY_ADDRESS = "192.168.1.11"
SL_ADDRESS = "192.168.1.12"
API_KEY = "TESTAPIKEY123"


def load_fixture(family: str, endpoint: str) -> dict[str, Any]:
    """Return the decoded fixture for ``/api/<endpoint>`` of *family*."""
    return json.loads((FIXTURES / family / f"{endpoint}.json").read_text(encoding="utf-8"))


def fixture_endpoints(family: str) -> dict[str, bytes]:
    """Map every API path suffix of *family* to its fixture body."""
    root = FIXTURES / family
    return {
        path.relative_to(root).with_suffix("").as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*.json"))
    }


# ---------------------------------------------------------------------------
# HTTP mocking
# ---------------------------------------------------------------------------


@pytest.fixture()
def rsps():
    """A ``responses`` mock that tolerates unused registrations."""
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


@pytest.fixture()
def serve_printer(rsps) -> Callable[..., None]:
    """Register fixture payloads of a family on ``http://<address>/api/...``.

    ``overrides`` replaces or adds endpoints: a dict is served as JSON, an
    exception instance is raised by the transport, ``None`` drops it.
    """

    def _serve(family: str, address: str, overrides: dict[str, Any] | None = None) -> None:
        bodies: dict[str, Any] = dict(fixture_endpoints(family))
        bodies.update(overrides or {})
        for endpoint, body in bodies.items():
            if body is None:
                continue
            url = f"http://{address}/api/{endpoint}"
            if isinstance(body, Exception):
                rsps.add(responses.GET, url, body=body)
            elif isinstance(body, (dict, list)):
                rsps.add(responses.GET, url, json=body, status=200)
            else:
                rsps.add(responses.GET, url, body=body, status=200, content_type="application/json")

    return _serve


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@pytest.fixture()
def buddy_target() -> TargetConfig:
    return TargetConfig(address=BUDDY_ADDRESS, name="mk4", declared_type="MK4", api_key=API_KEY)


@pytest.fixture()
def einsy_target() -> TargetConfig:
    return TargetConfig(address=EINSY_ADDRESS, name="mk3s", declared_type="I3MK3S", api_key=API_KEY)


@pytest.fixture()
def sl_target() -> TargetConfig:
    return TargetConfig(address=SL_ADDRESS, name="sl1", declared_type="SL1", username="maker", password="pw")


@pytest.fixture()
def config_file(tmp_path: Path) -> Callable[[str], Path]:
    """Write *text* to a ``prusa.yml`` in a temp dir and return its path."""

    def _write(text: str) -> Path:
        path = tmp_path / "prusa.yml"
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep developer environment overrides out of the tests."""
    for name in (
        "PRUSA_EXPORTER_CONFIG",
        "PRUSA_EXPORTER_SCRAPE_TIMEOUT",
        "PRUSA_EXPORTER_HOST",
        "PRUSA_EXPORTER_PORT",
        "PRUSA_EXPORTER_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
