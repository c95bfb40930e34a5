"""
Exception types raised across the check pipeline.
"""
from typing import Optional


class StorePulseError(Exception):
    """Base class for all storepulse errors."""


class UnitLoadError(StorePulseError):
    """The work-unit list (locations, items or stores) could not be loaded."""


class CheckInProgressError(StorePulseError):
    """Another run of the same check kind is still going."""


class InstamartApiError(StorePulseError):
    """Non-2xx response from the Instamart API."""

    def __init__(self, status: int, reason: Optional[str] = None, url: Optional[str] = None):
        self.status = status
        self.reason = reason or "Error"
        self.url = url
        super().__init__(f"Instamart API returned {status} {self.reason}")
