"""Configuration model for the hail intelligence engine."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

ExportFormat = Literal["json", "geojson"]

DEFAULT_SIZE_TIERS: tuple[float, ...] = (1.0, 1.5, 2.0, 2.5)


class ServiceArea(BaseModel):
    """Bounding box reports must fall inside to be accepted."""

    north: float = Field(ge=-90.0, le=90.0)
    south: float = Field(ge=-90.0, le=90.0)
    east: float = Field(ge=-180.0, le=180.0)
    west: float = Field(ge=-180.0, le=180.0)

    @model_validator(mode="after")
    def _check_order(self) -> ServiceArea:
        if self.south > self.north:
            raise ValueError("service area south edge lies north of its north edge")
        if self.west > self.east:
            raise ValueError("service area west edge lies east of its east edge")
        return self

    def contains(self, latitude: float, longitude: float) -> bool:
        return self.south <= latitude <= self.north and self.west <= longitude <= self.east


class HailIntelConfig(BaseSettings):
    """All tunable parameters of the engine.

    Values can be set via constructor arguments, environment variables
    prefixed with HAIL_INTEL_, or defaults.  None of the alerting thresholds
    are hardcoded elsewhere; the engine components read them from here.
    """

    model_config = {"env_prefix": "HAIL_INTEL_"}

    # Alerting
    alert_threshold: float = Field(
        default=55.0, ge=0.0, le=100.0,
        description="Storm confidence needed before the initial alert fires.",
    )
    size_tiers: tuple[float, ...] = Field(
        default=DEFAULT_SIZE_TIERS,
        description="Hail size tiers (inches); crossing the next one escalates.",
    )
    expansion_factor: float = Field(
        default=2.0, gt=1.0,
        description="Report-count growth multiple that counts as an expansion.",
    )
    min_alert_size_inches: float = Field(
        default=0.0, ge=0.0,
        description="Storms with a smaller peak hail size never alert.",
    )
    quiet_hours_start: int | None = Field(
        default=None, ge=0, le=23, description="Hour (UTC) delivery pauses."
    )
    quiet_hours_end: int | None = Field(
        default=None, ge=0, le=23, description="Hour (UTC) delivery resumes."
    )

    # Clustering
    cluster_radius_miles: float = Field(
        default=5.0, gt=0.0, description="Max distance to a storm's latest report."
    )
    cluster_window_minutes: float = Field(
        default=30.0, gt=0.0, description="Max time gap to a storm's latest report."
    )
    quiet_window_minutes: float = Field(
        default=120.0, gt=0.0,
        description="A storm with no report for this long becomes inactive.",
    )

    # Sources
    realtime_window_days: int = Field(
        default=7, ge=1, le=30,
        description="The real-time tier is only asked about this many recent days.",
    )
    tier_timeout_seconds: float = Field(
        default=20.0, gt=0.0, le=300.0, description="Per-tier fetch timeout."
    )
    realtime_url: str = Field(
        default="https://d2d-realtime-server.onrender.com",
        description="Base URL of the real-time MESH server.",
    )
    historical_url: str = Field(
        default="https://d2d-dynamic-server.onrender.com",
        description="Base URL of the historical MESH archive server.",
    )
    fallback_dataset: Path | None = Field(
        default=None, description="CSV of canned reports used as the last resort."
    )
    service_area: ServiceArea | None = Field(
        default=None, description="Reject reports outside this bounding box."
    )
    cache_enabled: bool = Field(
        default=True, description="Cache archive responses for past days on disk."
    )

    # Collaborators
    store_dir: Path = Field(
        default=Path("hail_intel_data"),
        description="Directory for persisted storms and the notification log.",
    )
    webhook_url: str | None = Field(
        default=None, description="POST notifications to this URL when set."
    )

    @field_validator("size_tiers")
    @classmethod
    def _tiers_ascending(cls, value: tuple[float, ...]) -> tuple[float, ...]:
        if not value:
            raise ValueError("at least one size tier is required")
        if any(t <= 0 for t in value):
            raise ValueError("size tiers must be positive")
        if list(value) != sorted(set(value)):
            raise ValueError("size tiers must be strictly ascending")
        return value
