import asyncio
import time

import pytest
from unittest.mock import AsyncMock, MagicMock

from storepulse.config import SERVICEABILITY_TABLE
from storepulse.fallback import StaticFallbackGenerator
from storepulse.models import (
    BatchResult,
    BatchSummary,
    CheckKind,
    PipelineOptions,
    ProbeFailure,
    ProbeSuccess,
    now_iso,
)
from storepulse.normalizer import extract_availability, extract_serviceability
from storepulse.reconciler import ResultReconciler, to_availability_row
from storepulse.storage import InMemoryStore, StoreResult

AVAILABILITY_COLUMNS = {
    "store_id",
    "item_id",
    "item_name",
    "store_locality",
    "store_description",
    "spot_name",
    "spot_area",
    "spot_city",
    "spot_lat",
    "spot_lng",
    "available",
}


@pytest.fixture
def batch_result(locations, serviceability_payload):
    ts = now_iso()
    ok = [
        ProbeSuccess(unit=loc, record=extract_serviceability(serviceability_payload(store_id=str(i)), loc, ts),
                     http_status=200, timestamp=ts)
        for i, loc in enumerate(locations[:2])
    ]
    failed = [
        ProbeFailure(unit=locations[2], error="Timed out after 10.0s", timestamp=ts,
                     record=StaticFallbackGenerator().serviceability(locations[2], ts))
    ]
    return BatchResult(successful=tuple(ok), failed=tuple(failed), summary=BatchSummary.build(3, 2, 1, 0, 0.5))


@pytest.mark.asyncio
async def test_reconcile_persists_successes(batch_result):
    store = InMemoryStore()
    report = await ResultReconciler(store).reconcile(CheckKind.SERVICEABILITY, batch_result, PipelineOptions())

    assert report.success is True
    assert report.persisted is True
    rows = store.tables[SERVICEABILITY_TABLE]
    assert [r["store_id"] for r in rows] == ["0", "1"]
    assert rows[0]["spot_name"] == "Lodha Park"
    assert rows[0]["spot_lat"] == 19.0158
    assert rows[0]["sla"] == "12 Mins"
    assert len(report.results) == 2
    assert report.results[0]["sla_band"] == "success"
    assert report.errors[0]["error"] == "Timed out after 10.0s"
    assert report.errors[0]["fallback"]["store_id"] == "0000000"


@pytest.mark.asyncio
async def test_reconcile_test_mode_skips_storage(batch_result):
    store = MagicMock()
    store.bulk_insert = AsyncMock()
    report = await ResultReconciler(store).reconcile(
        CheckKind.SERVICEABILITY, batch_result, PipelineOptions(test_mode=True)
    )

    store.bulk_insert.assert_not_awaited()
    assert report.persisted is None
    assert report.success is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "bulk_insert",
    [
        AsyncMock(return_value=StoreResult(error="relation does not exist")),
        AsyncMock(side_effect=ConnectionError("supabase down")),
    ],
)
async def test_reconcile_storage_failure_keeps_success(batch_result, bulk_insert):
    store = MagicMock()
    store.bulk_insert = bulk_insert

    report = await ResultReconciler(store).reconcile(CheckKind.SERVICEABILITY, batch_result, PipelineOptions())

    bulk_insert.assert_awaited_once()
    assert report.success is True
    assert report.persisted is False
    assert report.summary.successful == 2


@pytest.mark.asyncio
async def test_slow_insert_does_not_stall_event_loop(batch_result):
    """Other tasks keep running while the write is in flight."""
    async def slow_insert(table, rows):
        await asyncio.sleep(0.2)
        return StoreResult(records=list(rows), count=len(rows))

    store = MagicMock()
    store.bulk_insert = AsyncMock(side_effect=slow_insert)
    gaps = []

    async def heartbeat():
        last = time.perf_counter()
        while True:
            await asyncio.sleep(0.01)
            now = time.perf_counter()
            gaps.append(now - last)
            last = now

    ticker = asyncio.create_task(heartbeat())
    try:
        report = await ResultReconciler(store).reconcile(CheckKind.SERVICEABILITY, batch_result, PipelineOptions())
    finally:
        ticker.cancel()

    assert report.persisted is True
    assert len(gaps) >= 5
    assert max(gaps) < 0.15


@pytest.mark.asyncio
async def test_reconcile_full_data(batch_result):
    report = await ResultReconciler(InMemoryStore()).reconcile(
        CheckKind.SERVICEABILITY, batch_result, PipelineOptions(return_full_data=True, test_mode=True)
    )

    detail = report.results[0]
    assert detail["ok"] is True
    assert detail["recognized"] is True
    assert detail["unit"]["name"] == "Lodha Park"
    assert detail["record"]["store_id"] == "0"


@pytest.mark.asyncio
async def test_reconcile_nothing_to_save():
    store = MagicMock()
    store.bulk_insert = AsyncMock()
    report = await ResultReconciler(store).reconcile(CheckKind.AVAILABILITY, BatchResult.empty(), PipelineOptions())

    store.bulk_insert.assert_not_awaited()
    assert report.success is True
    assert report.persisted is None
    assert report.summary.total == 0


def test_to_availability_row(store_item, availability_payload):
    row = to_availability_row(extract_availability(availability_payload(), store_item))

    assert row["store_id"] == "1385841"
    assert row["item_id"] == "A8S21QP2A1"
    assert row["available"] is True
    assert row["spot_city"] == "Mumbai"
    assert row["spot_lng"] == 72.8293


def test_availability_row_matches_table_columns(store_item, availability_payload):
    """Only columns that exist in item_availability are written; the internal name stays in reports."""
    record = extract_availability(availability_payload(), store_item)

    assert set(to_availability_row(record)) == AVAILABILITY_COLUMNS
    assert record.item_internal_name == store_item.item_internal_name
