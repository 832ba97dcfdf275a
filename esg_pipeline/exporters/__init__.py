"""Exporters for extracted ESG records (JSON and flat CSV)."""

from .record_exporter import CSV_COLUMNS, RecordExporter, build_flat_row

__all__ = ["CSV_COLUMNS", "RecordExporter", "build_flat_row"]
