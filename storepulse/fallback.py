"""
Synthesized records used when a probe fails, so every unit still has a value.
"""
import random
from typing import Optional, Protocol

from storepulse.models import (
    AvailabilityRecord,
    Location,
    Serviceability,
    ServiceabilityRecord,
    StoreItemPair,
)


class FallbackGenerator(Protocol):
    def serviceability(self, location: Location, timestamp: str) -> ServiceabilityRecord:
        ...

    def availability(self, unit: StoreItemPair, timestamp: str) -> AvailabilityRecord:
        ...


class RandomFallbackGenerator:
    """
    Plausible randomized fallback values.

    Pass `seed` to get a repeatable sequence.
    """

    def __init__(self, seed: Optional[int] = None, available_probability: float = 0.7):
        self._rng = random.Random(seed)
        self.available_probability = available_probability

    def serviceability(self, location: Location, timestamp: str) -> ServiceabilityRecord:
        store_id = str(self._rng.randint(1_000_000, 1_999_999))
        return ServiceabilityRecord(
            store_id=store_id,
            store_description=f"Mock Store {store_id}",
            store_locality=location.area,
            sla=f"{self._rng.randint(8, 40)} Mins",
            serviceability=Serviceability.SERVICEABLE.value,
            location_meta=location.meta(),
            timestamp=timestamp,
        )

    def availability(self, unit: StoreItemPair, timestamp: str) -> AvailabilityRecord:
        return AvailabilityRecord(
            store_id=unit.store_id,
            item_id=unit.item_id,
            item_internal_name=unit.item_internal_name,
            item_name=f"Mock Item {unit.item_id}",
            brand="Mock Brand",
            category="Mock Category",
            available=self._rng.random() < self.available_probability,
            store_locality=unit.spot_area,
            store_description=f"Mock Store {unit.store_id}",
            spot=unit.spot(),
            coordinates=unit.coordinates(),
            timestamp=timestamp,
        )


class StaticFallbackGenerator:
    """Fixed fallback values, for tests and dry runs."""

    def __init__(self, store_id: str = "0000000", sla: str = "30 Mins", available: bool = False):
        self.store_id = store_id
        self.sla = sla
        self.available = available

    def serviceability(self, location: Location, timestamp: str) -> ServiceabilityRecord:
        return ServiceabilityRecord(
            store_id=self.store_id,
            store_description=f"Fallback Store {self.store_id}",
            store_locality=location.area,
            sla=self.sla,
            serviceability=Serviceability.SERVICEABLE.value,
            location_meta=location.meta(),
            timestamp=timestamp,
        )

    def availability(self, unit: StoreItemPair, timestamp: str) -> AvailabilityRecord:
        return AvailabilityRecord(
            store_id=unit.store_id,
            item_id=unit.item_id,
            item_internal_name=unit.item_internal_name,
            item_name=f"Fallback Item {unit.item_id}",
            brand="Fallback Brand",
            category="Fallback Category",
            available=self.available,
            store_locality=unit.spot_area,
            store_description=f"Fallback Store {unit.store_id}",
            spot=unit.spot(),
            coordinates=unit.coordinates(),
            timestamp=timestamp,
        )
