"""Calibre library access: record enumeration and export backends."""

from .exporter import (
    CalibredbExporter,
    CopyExporter,
    Exporter,
    ExportResult,
    create_exporter,
)
from .models import CustomField, ExtraValue, FieldStorage, Record
from .reader import CalibreCatalog

__all__ = [
    "CalibreCatalog",
    "CalibredbExporter",
    "CopyExporter",
    "CustomField",
    "ExportResult",
    "Exporter",
    "ExtraValue",
    "FieldStorage",
    "Record",
    "create_exporter",
]
