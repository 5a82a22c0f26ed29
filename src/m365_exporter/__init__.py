"""Prometheus exporter for Microsoft 365 tenant health."""

__version__ = "0.3.0"
