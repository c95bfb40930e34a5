"""
Typed data models for the store check pipeline.
All data structures used throughout the codebase should be defined here.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

# Placeholder for text fields the API did not give us. Records never leave a field out.
UNKNOWN = "Unknown"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CheckKind(str, Enum):
    SERVICEABILITY = "serviceability"
    AVAILABILITY = "availability"


class Serviceability(str, Enum):
    SERVICEABLE = "SERVICEABLE"
    NOT_SERVICEABLE = "NOT_SERVICEABLE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Location:
    """Serviceability work unit loaded from the locations CSV."""
    name: str
    lat: float
    lng: float
    area: str = UNKNOWN
    city: str = UNKNOWN

    @property
    def unit_id(self) -> str:
        return self.name

    def meta(self) -> Dict[str, Any]:
        return {
            "society_name": self.name,
            "area": self.area,
            "city": self.city,
            "coordinates": {"lat": self.lat, "lng": self.lng},
        }


@dataclass(frozen=True)
class StoreItemPair:
    """Availability work unit: one item at one serviceable store."""
    store_id: str
    lat: float
    lng: float
    item_id: str
    item_internal_name: str = UNKNOWN
    spot_name: str = UNKNOWN
    spot_area: str = UNKNOWN
    spot_city: str = UNKNOWN

    @property
    def unit_id(self) -> str:
        return f"{self.store_id}:{self.item_id}"

    def spot(self) -> Dict[str, str]:
        return {"name": self.spot_name, "area": self.spot_area, "city": self.spot_city}

    def coordinates(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


WorkUnit = Union[Location, StoreItemPair]


@dataclass
class ServiceabilityRecord:
    store_id: str
    store_description: str
    store_locality: str
    sla: str  # minutes label, e.g. "15 Mins"
    serviceability: str
    location_meta: Dict[str, Any]
    timestamp: str
    extraction_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AvailabilityRecord:
    store_id: str
    item_id: str
    item_internal_name: str
    item_name: str
    brand: str
    category: str
    available: Optional[bool]  # None means unknown
    store_locality: str
    store_description: str
    spot: Dict[str, str]
    coordinates: Dict[str, float]
    timestamp: str
    extraction_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


Record = Union[ServiceabilityRecord, AvailabilityRecord]


@dataclass
class ProbeSuccess:
    """The API answered with 2xx. `recognized` is False when no known field could be read."""
    unit: WorkUnit
    record: Record
    http_status: int
    timestamp: str
    recognized: bool = True
    ok: bool = field(default=True, init=False)


@dataclass
class ProbeFailure:
    """The call failed; `record` is the synthesized fallback."""
    unit: WorkUnit
    error: str
    timestamp: str
    record: Record
    http_status: Optional[int] = None
    ok: bool = field(default=False, init=False)


ProbeOutcome = Union[ProbeSuccess, ProbeFailure]


@dataclass(frozen=True)
class BatchSummary:
    total: int
    successful: int
    failed: int
    unrecognized: int
    success_rate: float
    duration_seconds: float

    @classmethod
    def build(cls, total: int, successful: int, failed: int, unrecognized: int, duration: float) -> "BatchSummary":
        rate = round(successful / total * 100, 2) if total else 0.0
        return cls(
            total=total,
            successful=successful,
            failed=failed,
            unrecognized=unrecognized,
            success_rate=rate,
            duration_seconds=round(duration, 3),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BatchResult:
    successful: Tuple[ProbeSuccess, ...]
    failed: Tuple[ProbeFailure, ...]
    summary: BatchSummary

    @classmethod
    def empty(cls) -> "BatchResult":
        return cls(successful=(), failed=(), summary=BatchSummary.build(0, 0, 0, 0, 0.0))


@dataclass
class PipelineOptions:
    """Options accepted by `invoke_pipeline`."""
    source: str = "manual"
    explicit_unit_ids: Optional[Sequence[str]] = None
    test_mode: bool = False
    return_full_data: bool = False
    batch_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["explicit_unit_ids"] is not None:
            data["explicit_unit_ids"] = list(data["explicit_unit_ids"])
        return data


@dataclass
class FinalReport:
    success: bool
    kind: CheckKind
    message: str
    timestamp: str
    options: PipelineOptions
    summary: Optional[BatchSummary] = None
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    persisted: Optional[bool] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "kind": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "summary": self.summary.to_dict() if self.summary else None,
            "results": self.results,
            "errors": self.errors,
            "persisted": self.persisted,
            "error": self.error,
            "options": self.options.to_dict(),
        }
