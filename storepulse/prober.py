import asyncio
import time
from typing import Any, Dict, Optional
from loguru import logger

from storepulse.config import PipelineConfig
from storepulse.errors import InstamartApiError
from storepulse.fallback import FallbackGenerator
from storepulse.models import (
    Location,
    ProbeFailure,
    ProbeOutcome,
    ProbeSuccess,
    WorkUnit,
    now_iso,
)
from storepulse.normalizer import extract_availability, extract_serviceability, is_recognized


class ExternalProber:
    """
    Issues one outbound call per work unit and always returns an outcome.

    Failures (timeout, transport error, non-2xx) become a
    ProbeFailure carrying a record from the injected fallback generator.
    """

    def __init__(self, client, fallback: FallbackGenerator, config: Optional[PipelineConfig] = None):
        self.client = client
        self.fallback = fallback
        self.config = config or PipelineConfig()

    async def _call(self, unit: WorkUnit) -> Dict[str, Any]:
        if isinstance(unit, Location):
            return await self.client.fetch_serviceability(unit.lat, unit.lng)
        return await self.client.fetch_item_widgets(unit.store_id, unit.item_id, unit.lat, unit.lng)

    def _fallback(self, unit: WorkUnit, timestamp: str):
        if isinstance(unit, Location):
            return self.fallback.serviceability(unit, timestamp)
        return self.fallback.availability(unit, timestamp)

    async def probe(self, unit: WorkUnit) -> ProbeOutcome:
        """
        Probe a single location or store/item pair.

        Args:
            unit (WorkUnit): Location (serviceability) or StoreItemPair (availability).

        Returns:
            ProbeOutcome: ProbeSuccess with the normalized record, or ProbeFailure
                          with a synthesized fallback record. Never raises.
        """
        start = time.perf_counter()
        timestamp = now_iso()
        logger.debug(f"▶️ START probe for {unit.unit_id}")
        try:
            response = await asyncio.wait_for(self._call(unit), timeout=self.config.api_timeout_s)
        except asyncio.TimeoutError:
            error = f"Timed out after {self.config.api_timeout_s:.1f}s"
            logger.debug(f"⏱️ TIMEOUT probe for {unit.unit_id}")
            return ProbeFailure(unit=unit, error=error, timestamp=timestamp, record=self._fallback(unit, timestamp))
        except InstamartApiError as e:
            logger.debug(f"⚠️ HTTP {e.status} for {unit.unit_id}")
            return ProbeFailure(
                unit=unit,
                error=str(e),
                timestamp=timestamp,
                record=self._fallback(unit, timestamp),
                http_status=e.status,
            )
        except Exception as e:
            logger.debug(f"⚠️ ERROR probing {unit.unit_id}: {e}")
            return ProbeFailure(
                unit=unit,
                error=str(e) or type(e).__name__,
                timestamp=timestamp,
                record=self._fallback(unit, timestamp),
            )

        body = response.get("body")
        if isinstance(unit, Location):
            record = extract_serviceability(body, unit, timestamp)
        else:
            record = extract_availability(body, unit, timestamp)

        recognized = is_recognized(record)
        if not recognized:
            logger.warning(f"🤷 Unrecognized response shape for {unit.unit_id}")

        duration = time.perf_counter() - start
        logger.debug(f"✅ Completed probe for {unit.unit_id} in {duration:.2f}s")
        return ProbeSuccess(
            unit=unit,
            record=record,
            http_status=response.get("status", 200),
            timestamp=timestamp,
            recognized=recognized,
        )
