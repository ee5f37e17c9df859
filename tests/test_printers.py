"""Tests for the PrusaLink façades (printers.base / printers.prusalink)."""

from __future__ import annotations

import pytest
import requests
import responses

from conftest import BUDDY_ADDRESS, EINSY_ADDRESS, SL_ADDRESS, load_fixture
from prusa_exporter.config import TargetConfig
from prusa_exporter.printers.base import (
    DecodeError,
    FirmwareFamily,
    Job,
    NetworkError,
    NotSupported,
    PrinterTelemetry,
    Temperature,
    decode_json,
)
from prusa_exporter.printers.client import EndpointClient
from prusa_exporter.printers.prusalink import (
    BuddyPrinter,
    EinsyPrinter,
    SLPrinter,
    job_from_legacy_payload,
    job_from_v1_payload,
    new_printer,
)
from prusa_exporter.state import StateOrdinal


@pytest.fixture()
def client():
    return EndpointClient(5)


# ---------------------------------------------------------------------------
# decode_json
# ---------------------------------------------------------------------------


class TestDecodeJson:
    def test_object(self):
        assert decode_json("version", b'{"api": "1"}') == {"api": "1"}

    def test_invalid_json(self):
        with pytest.raises(DecodeError) as exc_info:
            decode_json("version", b"not json")
        assert exc_info.value.endpoint == "version"
        assert exc_info.value.cause is not None

    def test_non_object_root(self):
        with pytest.raises(DecodeError, match="expected an object"):
            decode_json("files", b"[1, 2]")

    def test_empty_body_rejected_by_default(self):
        with pytest.raises(DecodeError):
            decode_json("job", b"")

    def test_empty_body_allowed(self):
        assert decode_json("v1/job", b"  ", allow_empty=True) == {}


# ---------------------------------------------------------------------------
# Job normalisation
# ---------------------------------------------------------------------------


class TestJobPayloads:
    def test_v1_fixture(self):
        job = job_from_v1_payload(load_fixture("buddy", "v1/job"))

        assert job.job_id == 109
        assert job.file_name == "multiple_grots_0.4n_0.15mm_PLA,PLA,PLA,PLA_XLIS_5h36m.bgcode"
        assert job.file_path == "/usb/MULTIP~1.BGC"
        assert job.time_elapsed == 254
        assert job.time_remaining == 20100

    def test_legacy_fixture(self):
        job = job_from_legacy_payload(load_fixture("einsy", "job"))

        assert job.job_id == 0
        assert job.file_name == "fosdem_0.2mm_PLA,PLA_MK3SMMU3_7h16m.gcode"
        assert job.file_path == "/SD Card/fosdem_0.2mm_PLA,PLA_MK3SMMU3_7h16m.gcode"
        assert job.time_remaining == 26160

    def test_legacy_nulls_default(self):
        assert job_from_legacy_payload(load_fixture("sl", "job")) == Job()

    def test_v1_empty_is_idle(self):
        assert job_from_v1_payload({}) == Job()

    def test_equivalent_shapes_normalise_identically(self):
        v1 = {
            "id": 0,
            "progress": 42.0,
            "time_printing": 600,
            "time_remaining": 1200,
            "file": {"name": "BENCHY.GCO", "display_name": "benchy.gcode", "path": "/usb"},
        }
        legacy = {
            "job": {"file": {"name": "benchy.gcode", "path": "/usb/BENCHY.GCO"}},
            "progress": {"completion": 42.0, "printTime": 600, "printTimeLeft": 1200},
        }
        assert job_from_v1_payload(v1) == job_from_legacy_payload(legacy)

    def test_wrong_type_is_decode_error(self):
        with pytest.raises(DecodeError, match="progress.completion should be a number"):
            job_from_legacy_payload({"progress": {"completion": "half"}})

    def test_bool_is_not_a_number(self):
        with pytest.raises(DecodeError):
            job_from_v1_payload({"progress": True})


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class TestPrinterTelemetry:
    def test_empty_payload_defaults(self):
        telemetry = PrinterTelemetry.from_payload({}, fan_keys={})

        assert telemetry.bed == Temperature()
        assert telemetry.material == ""
        assert telemetry.cover_closed is False
        assert dict(telemetry.fans) == {}
        assert telemetry.state_text == ""

    def test_camel_case_flags(self):
        telemetry = PrinterTelemetry.from_payload(
            {"state": {"flags": {"sdReady": True, "closedOnError": True}}},
            fan_keys={},
        )
        assert telemetry.flags.sd_ready is True
        assert telemetry.flags.closed_on_error is True

    def test_sl_fixture(self):
        telemetry = PrinterTelemetry.from_payload(
            load_fixture("sl", "printer"),
            fan_keys=SLPrinter.telemetry_fans,
        )

        assert telemetry.cover_closed is True
        assert telemetry.ambient_temp == 24.2
        assert telemetry.cpu_temp == 51.1
        assert telemetry.uv_led_temp == 26.5
        assert telemetry.chamber.actual == 24.2
        assert dict(telemetry.fans) == {"blower": 0.0, "rear": 0.0, "uv": 0.0}

    def test_string_temperature_rejected(self):
        with pytest.raises(DecodeError):
            PrinterTelemetry.from_payload({"temperature": {"bed": {"actual": "hot"}}}, fan_keys={})


# ---------------------------------------------------------------------------
# new_printer dispatch
# ---------------------------------------------------------------------------


class TestNewPrinter:
    @pytest.mark.parametrize(
        "declared,cls",
        [("MK4", BuddyPrinter), ("I3MK3S", EinsyPrinter), ("SL1", SLPrinter)],
    )
    def test_dispatch(self, client, declared, cls):
        printer = new_printer(TargetConfig(address="h", declared_type=declared), client)
        assert type(printer) is cls
        assert printer.model == declared

    def test_base_labels(self, client):
        printer = new_printer(TargetConfig(address="h:8080", name="left", declared_type="mk4"), client)
        assert printer.base_labels() == ("h:8080", "MK4", "left")

    def test_metric_labels(self, client):
        printer = new_printer(TargetConfig(address="h", name="n", declared_type="XL"), client)
        job = Job(file_name="a.gcode", file_path="/usb/A.GCO")
        assert printer.metric_labels(job, "x") == ("h", "XL", "n", "a.gcode", "/usb/A.GCO", "x")

    def test_metric_labels_idle(self, client):
        printer = new_printer(TargetConfig(address="h", declared_type="SL1"), client)
        assert printer.metric_labels(Job()) == ("h", "SL1", "", "", "")


# ---------------------------------------------------------------------------
# Families against fixtures
# ---------------------------------------------------------------------------


class TestBuddyPrinter:
    def test_job_uses_v1_endpoint(self, serve_printer, rsps, buddy_target, client):
        serve_printer("buddy", BUDDY_ADDRESS)
        printer = new_printer(buddy_target, client)

        job = printer.get_job()

        assert job.job_id == 109
        assert rsps.calls[0].request.url == f"http://{BUDDY_ADDRESS}/api/v1/job"

    def test_idle_job_204(self, serve_printer, rsps, buddy_target, client):
        serve_printer("buddy", BUDDY_ADDRESS, {"v1/job": None})
        rsps.add(responses.GET, f"http://{BUDDY_ADDRESS}/api/v1/job", body=b"", status=204)

        assert new_printer(buddy_target, client).get_job() == Job()

    def test_status_and_info(self, serve_printer, buddy_target, client):
        serve_printer("buddy", BUDDY_ADDRESS)
        printer = new_printer(buddy_target, client)

        status = printer.get_status()
        info = printer.get_info()

        assert status.flow == 100
        assert dict(status.fans) == {"hotend": 0.0, "print": 0.0}
        assert info.serial == "10589-3742441631728135"
        assert info.mmu is False
        assert info.nozzle_diameter == 0.4

    def test_storage(self, serve_printer, buddy_target, client):
        serve_printer("buddy", BUDDY_ADDRESS)

        storage = new_printer(buddy_target, client).get_storage()

        assert len(storage) == 1
        assert storage[0].name == "usb"
        assert storage[0].free_space == 14483341312
        assert storage[0].available is True

    def test_files_child_count(self, serve_printer, buddy_target, client):
        serve_printer("buddy", BUDDY_ADDRESS)

        files = new_printer(buddy_target, client).get_files()

        assert [(f.display, f.child_count) for f in files] == [("usb", 2)]

    @pytest.mark.parametrize("operation", ["get_settings", "get_cameras"])
    def test_not_supported_without_request(self, rsps, buddy_target, client, operation):
        printer = new_printer(buddy_target, client)

        with pytest.raises(NotSupported) as exc_info:
            getattr(printer, operation)()

        assert exc_info.value.family is FirmwareFamily.BUDDY
        assert len(rsps.calls) == 0

    def test_state_label(self, serve_printer, buddy_target, client):
        serve_printer("buddy", BUDDY_ADDRESS)
        printer = new_printer(buddy_target, client)

        ordinal, text = printer.get_state_label(printer.get_printer_telemetry())

        assert ordinal is StateOrdinal.PRINTING
        assert text == "Printing"


class TestEinsyPrinter:
    def test_job_uses_legacy_endpoint(self, serve_printer, rsps, einsy_target, client):
        serve_printer("einsy", EINSY_ADDRESS)

        new_printer(einsy_target, client).get_job()

        assert rsps.calls[0].request.url == f"http://{EINSY_ADDRESS}/api/job"

    def test_settings(self, serve_printer, einsy_target, client):
        serve_printer("einsy", EINSY_ADDRESS)
        assert new_printer(einsy_target, client).get_settings().farm_mode is True

    def test_cameras(self, serve_printer, einsy_target, client):
        serve_printer("einsy", EINSY_ADDRESS)

        cameras = new_printer(einsy_target, client).get_cameras()

        assert len(cameras) == 1
        assert cameras[0].camera_id == "7d8e2a"
        assert cameras[0].name == "Nozzle cam"
        assert cameras[0].resolution == "1280x720"
        assert cameras[0].connected is True

    def test_storage_not_supported(self, rsps, einsy_target, client):
        with pytest.raises(NotSupported):
            new_printer(einsy_target, client).get_storage()
        assert len(rsps.calls) == 0

    def test_files(self, serve_printer, einsy_target, client):
        serve_printer("einsy", EINSY_ADDRESS)

        files = new_printer(einsy_target, client).get_files()

        assert {f.display: f.child_count for f in files} == {"PrusaLink gcodes": 0, "SD Card": 80}

    def test_version(self, serve_printer, einsy_target, client):
        serve_printer("einsy", EINSY_ADDRESS)

        version = new_printer(einsy_target, client).get_version()

        assert version.api == "0.9.0-legacy"
        assert version.text == "PrusaLink 0.7.2"


class TestSLPrinter:
    @pytest.mark.parametrize(
        "operation",
        ["get_status", "get_info", "get_settings", "get_cameras", "get_storage"],
    )
    def test_optional_endpoints_not_supported(self, rsps, sl_target, client, operation):
        with pytest.raises(NotSupported):
            getattr(new_printer(sl_target, client), operation)()
        assert len(rsps.calls) == 0

    def test_idle_job(self, serve_printer, sl_target, client):
        serve_printer("sl", SL_ADDRESS)
        assert new_printer(sl_target, client).get_job() == Job()

    def test_telemetry_fans(self, serve_printer, sl_target, client):
        serve_printer("sl", SL_ADDRESS)

        telemetry = new_printer(sl_target, client).get_printer_telemetry()

        assert set(telemetry.fans) == {"blower", "rear", "uv"}

    def test_network_error(self, serve_printer, sl_target, client):
        serve_printer("sl", SL_ADDRESS, {"printer": requests.ConnectionError("refused")})

        with pytest.raises(NetworkError):
            new_printer(sl_target, client).get_printer_telemetry()
