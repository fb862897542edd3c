"""Exporters for tracked storm events."""

from hail_intel.exporters.geojson_export import export_geojson
from hail_intel.exporters.json_export import export_json, storm_summary

__all__ = ["export_geojson", "export_json", "storm_summary"]
