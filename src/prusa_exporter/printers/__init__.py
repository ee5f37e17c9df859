"""PrusaLink printer access: endpoint client, classifier and façades."""

from prusa_exporter.printers.base import (
    Camera,
    DecodeError,
    FirmwareFamily,
    Info,
    Job,
    NetworkError,
    NotSupported,
    PrinterCapabilities,
    PrinterError,
    PrinterFacade,
    PrinterTelemetry,
    Settings,
    Status,
    Storage,
    StorageFolder,
    Temperature,
    UnknownFamily,
    Version,
)
from prusa_exporter.printers.classifier import Classification, classify
from prusa_exporter.printers.client import EndpointClient
from prusa_exporter.printers.prusalink import (
    BuddyPrinter,
    EinsyPrinter,
    SLPrinter,
    new_printer,
)

__all__ = [
    "BuddyPrinter",
    "Camera",
    "Classification",
    "DecodeError",
    "EinsyPrinter",
    "EndpointClient",
    "FirmwareFamily",
    "Info",
    "Job",
    "NetworkError",
    "NotSupported",
    "PrinterCapabilities",
    "PrinterError",
    "PrinterFacade",
    "PrinterTelemetry",
    "SLPrinter",
    "Settings",
    "Status",
    "Storage",
    "StorageFolder",
    "Temperature",
    "UnknownFamily",
    "Version",
    "classify",
    "new_printer",
]
