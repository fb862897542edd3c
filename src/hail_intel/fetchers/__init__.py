"""Hail report source tiers."""

from hail_intel.fetchers.mesh import ArchiveMeshSource, RealtimeMeshSource
from hail_intel.fetchers.static import KNOWN_STORMS_CSV, StaticFallbackSource

__all__ = ["KNOWN_STORMS_CSV", "ArchiveMeshSource", "RealtimeMeshSource", "StaticFallbackSource"]
