"""Hail intelligence aggregation and alerting engine."""

__version__ = "0.3.0"
