from dataclasses import asdict
from typing import Any, Dict, List, Optional
from loguru import logger

from storepulse.classifier import classify_availability, classify_sla
from storepulse.config import AVAILABILITY_TABLE, SERVICEABILITY_TABLE
from storepulse.models import (
    AvailabilityRecord,
    BatchResult,
    CheckKind,
    FinalReport,
    PipelineOptions,
    ProbeFailure,
    ProbeOutcome,
    ServiceabilityRecord,
    now_iso,
)
from storepulse.storage import RecordStore

TABLES = {
    CheckKind.SERVICEABILITY: SERVICEABILITY_TABLE,
    CheckKind.AVAILABILITY: AVAILABILITY_TABLE,
}


def to_serviceability_row(record: ServiceabilityRecord) -> Dict[str, Any]:
    meta = record.location_meta
    coords = meta.get("coordinates") or {}
    return {
        "store_id": record.store_id,
        "sla": record.sla,
        "serviceability": record.serviceability,
        "store_description": record.store_description,
        "store_locality": record.store_locality,
        "spot_name": meta.get("society_name"),
        "spot_area": meta.get("area"),
        "spot_city": meta.get("city"),
        "spot_lat": coords.get("lat"),
        "spot_lng": coords.get("lng"),
    }


def to_availability_row(record: AvailabilityRecord) -> Dict[str, Any]:
    return {
        "store_id": record.store_id,
        "item_id": record.item_id,
        "item_name": record.item_name,
        "store_locality": record.store_locality,
        "store_description": record.store_description,
        "spot_name": record.spot.get("name"),
        "spot_area": record.spot.get("area"),
        "spot_city": record.spot.get("city"),
        "spot_lat": record.coordinates.get("lat"),
        "spot_lng": record.coordinates.get("lng"),
        "available": record.available,
    }


def simplify_record(record) -> Dict[str, Any]:
    """Field-trimmed projection returned to callers by default."""
    if isinstance(record, ServiceabilityRecord):
        return {
            "location_meta": record.location_meta,
            "store_id": record.store_id,
            "store_description": record.store_description,
            "store_locality": record.store_locality,
            "sla": record.sla,
            "sla_band": classify_sla(record.sla).value,
            "serviceability": record.serviceability,
            "timestamp": record.timestamp,
        }
    return {
        "store_id": record.store_id,
        "item_id": record.item_id,
        "item_name": record.item_name,
        "item_internal_name": record.item_internal_name,
        "store_locality": record.store_locality,
        "store_description": record.store_description,
        "spot": record.spot,
        "coordinates": record.coordinates,
        "available": record.available,
        "availability_band": classify_availability(record.available).value,
        "timestamp": record.timestamp,
    }


def outcome_to_dict(outcome: ProbeOutcome) -> Dict[str, Any]:
    """Full per-unit detail."""
    data = {
        "unit": asdict(outcome.unit),
        "ok": outcome.ok,
        "http_status": outcome.http_status,
        "timestamp": outcome.timestamp,
        "record": outcome.record.to_dict(),
    }
    if outcome.ok:
        data["recognized"] = outcome.recognized
    else:
        data["error"] = outcome.error
    return data


def failure_to_dict(failure: ProbeFailure) -> Dict[str, Any]:
    return {
        "unit": asdict(failure.unit),
        "error": failure.error,
        "http_status": failure.http_status,
        "timestamp": failure.timestamp,
        "fallback": simplify_record(failure.record),
    }


class ResultReconciler:
    """
    Persists successful records (best effort) and builds the FinalReport.

    A storage failure is logged and recorded as `persisted=False`; it never
    turns `success` false.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    async def persist(self, kind: CheckKind, batch_result: BatchResult) -> Optional[bool]:
        records = [s.record for s in batch_result.successful]
        if not records:
            logger.info("No successful results to save")
            return None

        to_row = to_serviceability_row if kind is CheckKind.SERVICEABILITY else to_availability_row
        table = TABLES[kind]
        logger.info(f"Saving {len(records)} results to {table}...")
        try:
            result = await self.store.bulk_insert(table, [to_row(r) for r in records])
        except Exception as e:
            logger.error(f"Error saving to database: {e}")
            return False
        if result.error:
            logger.error(f"Error saving to database: {result.error}")
            return False
        logger.info(f"Successfully saved {len(result.records)} records to {table}")
        return True

    async def reconcile(self, kind: CheckKind, batch_result: BatchResult, options: PipelineOptions) -> FinalReport:
        persisted = None
        if not options.test_mode:
            persisted = await self.persist(kind, batch_result)

        if options.return_full_data:
            results: List[Dict[str, Any]] = [outcome_to_dict(s) for s in batch_result.successful]
        else:
            results = [simplify_record(s.record) for s in batch_result.successful]

        summary = batch_result.summary
        return FinalReport(
            success=True,
            kind=kind,
            message=f"Completed {kind.value} check for {summary.total} units",
            timestamp=now_iso(),
            options=options,
            summary=summary,
            results=results,
            errors=[failure_to_dict(f) for f in batch_result.failed],
            persisted=persisted,
        )
