"""
Exception types used across the exporter.

Fetch failures (ScrapeError and friends) are absorbed by the scrape worker
and only show up as scrape_success=0. Everything else is a startup or
serving problem and is allowed to propagate.
"""

from __future__ import annotations

from typing import Optional, Sequence


class ExporterError(Exception):
    """Base class for all exporter errors."""


class ConfigError(ExporterError):
    pass


class RegistrationError(ExporterError):
    pass


class DuplicateSubsystemError(RegistrationError):

    def __init__(self, subsystem: str):
        super().__init__(f"collector for subsystem {subsystem!r} is already registered")
        self.subsystem = subsystem


class SerializationError(ExporterError):
    """An observation doesn't match what its collector described."""


class ScrapeError(ExporterError):
    """Expected failure while fetching from an upstream API.

    `partial` holds whatever the fetch managed to build before failing.
    It is only used for logging, the worker never stores it.
    """

    def __init__(self, message: str, partial: Sequence = ()):
        super().__init__(message)
        self.partial = tuple(partial)


class AuthError(ScrapeError):
    pass


class GraphError(ScrapeError):
    """Decoded OData / Azure management error envelope."""

    def __init__(self, status_code: int, code: Optional[str], message: str):
        if code:
            text = f"{code}: {message}"
        else:
            text = message
        super().__init__(f"unexpected status code {status_code}: {text}")
        self.status_code = status_code
        self.code = code
        self.detail = message
