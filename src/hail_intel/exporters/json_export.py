"""JSON exporter for tracked storm events."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from hail_intel.models import StormEvent, storm_to_dict


def storm_summary(event: StormEvent) -> dict[str, Any]:
    """Storm document plus the derived figures a map client shows."""
    doc = storm_to_dict(event)
    doc["report_count"] = event.report_count
    doc["mean_confidence"] = round(event.mean_confidence, 1)
    doc["location"] = event.location
    b = event.bounds
    doc["bounds"] = {"north": b.north, "south": b.south, "east": b.east, "west": b.west}
    return doc


def export_json(
    events: list[StormEvent],
    output_path: Path,
    indent: int = 2,
) -> Path:
    """Export storm events, with their scored reports, to a JSON file."""
    data = [storm_summary(event) for event in events]
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False)
    return output_path
