"""FastAPI wrapper around a long-lived hail intelligence engine."""

from __future__ import annotations

import logging
import tempfile
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Annotated, Any, Literal

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from hail_intel import __version__
from hail_intel.config import ExportFormat, HailIntelConfig
from hail_intel.engine import HailIntelEngine
from hail_intel.errors import PersistenceFailure, SourcesExhausted
from hail_intel.exporters import export_geojson, storm_summary
from hail_intel.models import DateRange, SourceTier, StormEvent, entry_to_dict
from hail_intel.validation import parse_reports

logger = logging.getLogger(__name__)


def build_engine() -> HailIntelEngine:
    """Engine for the app's lifetime, configured from HAIL_INTEL_* variables."""
    return HailIntelEngine.from_config(HailIntelConfig())


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    """Build the engine and load persisted storms before serving."""
    application.state.start_time = datetime.now(tz=timezone.utc)
    application.state.last_run = None
    application.state.run_count = 0
    engine = build_engine()
    engine.start()
    application.state.engine = engine
    yield


app = FastAPI(
    title="Hail Intel API",
    description="Hail storm aggregation and canvassing alerts from MESH radar data.",
    version=__version__,
    lifespan=lifespan,
)


def _engine() -> HailIntelEngine:
    return app.state.engine


def _storms_response(events: list[StormEvent], fmt: ExportFormat) -> Response:
    if fmt == "json":
        return JSONResponse(content=[storm_summary(e) for e in events])

    with tempfile.NamedTemporaryFile(suffix=".geojson", delete=False) as tmp:
        tmp_path = Path(tmp.name)
    try:
        export_geojson(events, tmp_path)
        content = tmp_path.read_text(encoding="utf-8")
    finally:
        tmp_path.unlink(missing_ok=True)

    return Response(content=content, media_type="application/geo+json")


@app.get("/health")
def health() -> dict[str, Any]:
    """Server health check with uptime, version, run count and storm counts."""
    now = datetime.now(tz=timezone.utc)
    engine = _engine()
    return {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round((now - app.state.start_time).total_seconds(), 1),
        "last_run": app.state.last_run.isoformat() if app.state.last_run else None,
        "run_count": app.state.run_count,
        "storm_count": len(engine.aggregator.events),
        "active_storm_count": len(engine.aggregator.active_events),
    }


@app.get("/storms")
def list_storms(
    format: Annotated[
        ExportFormat, Query(description="Response format."),
    ] = "json",
    active_only: Annotated[
        bool, Query(description="Only storms still receiving reports."),
    ] = False,
    enabled_only: Annotated[
        bool, Query(description="Skip storms hidden from the map."),
    ] = False,
) -> Response:
    """Tracked storms, oldest first, as JSON or as a GeoJSON map overlay."""
    engine = _engine()
    events = engine.aggregator.active_events if active_only else engine.aggregator.events
    if enabled_only:
        events = [e for e in events if e.enabled]
    return _storms_response(events, format)


@app.get("/storms/{storm_id}")
def get_storm(storm_id: str) -> dict[str, Any]:
    event = _engine().aggregator.get(storm_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"No storm with id {storm_id}")
    return storm_summary(event)


@app.post("/storms/{storm_id}/toggle")
def toggle_storm(
    storm_id: str,
    enabled: Annotated[bool, Query(description="Show (true) or hide (false) the storm.")],
) -> dict[str, Any]:
    try:
        event = _engine().set_enabled(storm_id, enabled)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No storm with id {storm_id}") from None
    return storm_summary(event)


@app.post("/storms/{storm_id}/focus")
def focus_storm(storm_id: str) -> dict[str, Any]:
    """Show this storm on the map and hide every other."""
    try:
        event = _engine().focus_on(storm_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No storm with id {storm_id}") from None
    return storm_summary(event)


@app.get("/alerts")
def list_alerts(
    pending_only: Annotated[
        bool, Query(description="Only alerts nobody has acted on."),
    ] = False,
) -> list[dict[str, Any]]:
    """The notification log, newest first."""
    entries = _engine().store.load_notification_log()
    if pending_only:
        entries = [e for e in entries if not e.actioned]
    entries.sort(key=lambda e: e.timestamp, reverse=True)
    return [entry_to_dict(e) for e in entries]


@app.post("/alerts/{alert_id}/actioned")
def mark_alert_actioned(alert_id: str) -> dict[str, Any]:
    try:
        entry = _engine().mark_actioned(alert_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No alert with id {alert_id}") from None
    return entry_to_dict(entry)


@app.get("/history")
def address_history(
    lat: Annotated[float, Query(ge=-90.0, le=90.0, description="Address latitude.")],
    lon: Annotated[float, Query(ge=-180.0, le=180.0, description="Address longitude.")],
    radius: Annotated[float, Query(gt=0.0, le=50.0, description="Search radius in miles.")] = 1.0,
    years: Annotated[float, Query(gt=0.0, description="How far back to look.")] = 5.0,
) -> list[dict[str, Any]]:
    """Tracked storms that dropped hail near an address, newest first."""
    since = datetime.now(tz=timezone.utc) - timedelta(days=365.25 * years)
    hits = _engine().address_history(lat, lon, radius, since)
    return [
        {**asdict(h), "start_time": h.start_time.isoformat()}
        for h in hits
    ]


@app.post("/validation")
def validate(
    day: Annotated[date, Query(alias="date", description="UTC day to compare.")],
    observed: Annotated[
        list[dict[str, Any]], Body(description="Observed hail reports for the day."),
    ],
) -> dict[str, Any]:
    """Precision, recall and F1 of the tracked reports against observed ground truth.

    Unreadable observed reports are dropped.
    """
    ground_truth = parse_reports(observed, SourceTier.FALLBACK, "ground truth")
    metrics = _engine().validate_against(ground_truth, DateRange.for_day(day))
    return asdict(metrics)


@app.post("/run")
def run_pass(
    day: Annotated[
        date | None, Query(alias="date", description="Process one UTC day."),
    ] = None,
    hours: Annotated[
        float, Query(gt=0.0, le=24.0 * 30, description="Look-back window without a date."),
    ] = 24.0,
) -> JSONResponse:
    """Fetch reports from the source tiers and update storms and alerts.

    Returns 502 when no source tier could answer.
    """
    date_range = DateRange.for_day(day) if day is not None else DateRange.last_hours(hours)

    try:
        result = _engine().run_pass(date_range)
    except SourcesExhausted as exc:
        logger.error("Run failed: %s", exc)
        return JSONResponse(
            status_code=502,
            content={"detail": f"No hail source answered: {exc}", "tiers": exc.tiers},
        )
    except PersistenceFailure as exc:
        logger.exception("Run could not persist its results")
        return JSONResponse(status_code=500, content={"detail": f"Storage error: {exc}"})

    app.state.last_run = datetime.now(tz=timezone.utc)
    app.state.run_count += 1

    status: Literal["ok", "empty"] = "ok" if result.report_count else "empty"
    return JSONResponse(content={
        "status": status,
        "tier_used": result.tier_used.value if result.tier_used else None,
        "report_count": result.report_count,
        "attempts": [
            {
                "tier": a.tier.value,
                "status": a.status,
                "report_count": a.report_count,
                "error": a.error,
            }
            for a in result.attempts
        ],
        "storms": [storm_summary(e) for e in result.storms],
        "notifications": [entry_to_dict(e) for e in result.notifications],
        "delivered": result.delivered,
    })
