import re
from enum import Enum
from typing import Optional, Union


class SlaBand(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class AvailabilityBand(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


SLA_SUCCESS_MAX = 20
SLA_WARNING_MAX = 30

_MINUTES_RE = re.compile(r"(\d+)")


def parse_sla_minutes(label: Optional[Union[str, int]]) -> Optional[int]:
    """Pull the minute count out of a label such as "15 Mins". Returns None if there is none."""
    if label is None or isinstance(label, bool):
        return None
    if isinstance(label, int):
        return label
    match = _MINUTES_RE.search(str(label))
    return int(match.group(1)) if match else None


def classify_sla(label: Optional[Union[str, int]]) -> SlaBand:
    """
    Map an SLA minutes label to a severity band.

    Args:
        label: SLA label like "15 Mins", a bare minute count, or None.

    Returns:
        SlaBand: success (<= 20), warning (21-30), error (> 30 or unparsable).
    """
    minutes = parse_sla_minutes(label)
    if minutes is None:
        return SlaBand.ERROR
    if minutes <= SLA_SUCCESS_MAX:
        return SlaBand.SUCCESS
    if minutes <= SLA_WARNING_MAX:
        return SlaBand.WARNING
    return SlaBand.ERROR


def classify_availability(value: Optional[bool]) -> AvailabilityBand:
    if value is True:
        return AvailabilityBand.AVAILABLE
    if value is False:
        return AvailabilityBand.UNAVAILABLE
    return AvailabilityBand.UNKNOWN


def classify(value):
    """Booleans go to the availability bands; everything else (including None) is an SLA label."""
    if isinstance(value, bool):
        return classify_availability(value)
    return classify_sla(value)
