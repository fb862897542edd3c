"""GeoJSON exporter: storm footprints and report points for the map overlay."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from hail_intel.models import ScoredReport, StormEvent
from hail_intel.scoring import confidence_level


def _make_storm_feature(event: StormEvent) -> dict[str, Any]:
    """Bounding-box polygon for a storm (a Point while it has one location)."""
    b = event.bounds
    if b.north == b.south and b.east == b.west:
        geometry: dict[str, Any] = {"type": "Point", "coordinates": [b.west, b.south]}
    else:
        geometry = {
            "type": "Polygon",
            "coordinates": [[
                [b.west, b.south],
                [b.east, b.south],
                [b.east, b.north],
                [b.west, b.north],
                [b.west, b.south],
            ]],
        }
    level = confidence_level(event.mean_confidence)
    return {
        "type": "Feature",
        "geometry": geometry,
        "properties": {
            "feature_type": "storm",
            "storm_id": event.id,
            "location": event.location,
            "start_time": event.start_time.isoformat(),
            "end_time": event.end_time.isoformat() if event.end_time else None,
            "peak_size_inches": event.peak_size_inches,
            "report_count": event.report_count,
            "mean_confidence": round(event.mean_confidence, 1),
            "confidence_level": level.level,
            "color": level.color,
            "active": event.active,
            "enabled": event.enabled,
        },
    }


def _make_report_feature(scored: ScoredReport, event: StormEvent) -> dict[str, Any]:
    report = scored.report
    return {
        "type": "Feature",
        "geometry": {
            "type": "Point",
            "coordinates": [report.longitude, report.latitude],
        },
        "properties": {
            "feature_type": "report",
            "report_id": report.id,
            "storm_id": event.id,
            "size_inches": report.size_inches,
            "timestamp": report.timestamp.isoformat(),
            "source_tier": report.source_tier.value,
            "city": report.city,
            "confidence": scored.confidence.total_score,
            "color": confidence_level(scored.confidence.total_score).color,
        },
    }


def export_geojson(
    events: list[StormEvent],
    output_path: Path,
    enabled_only: bool = False,
) -> Path:
    """Export storms as a GeoJSON FeatureCollection.

    Two feature types:
    - "storm": the bounding box of each storm's reports
    - "report": every scored report, tagged with its storm

    GeoJSON coordinates are [longitude, latitude] per RFC 7946.
    """
    if enabled_only:
        events = [e for e in events if e.enabled]

    features: list[dict[str, Any]] = []
    for event in events:
        features.append(_make_storm_feature(event))
        features.extend(_make_report_feature(r, event) for r in event.reports)

    geojson = {
        "type": "FeatureCollection",
        "metadata": {
            "generated": datetime.now(tz=timezone.utc).isoformat(),
            "source": "hail-intel",
            "storm_count": len(events),
            "report_count": sum(e.report_count for e in events),
        },
        "features": features,
    }

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(geojson, f, indent=2, ensure_ascii=False)

    return output_path
