"""Resilience layer for third-party health-data providers."""

__version__ = "1.0.0"
