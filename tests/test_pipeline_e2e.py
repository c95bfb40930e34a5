import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from storepulse import storage
from storepulse.config import AVAILABILITY_TABLE, SERVICEABILITY_TABLE, PipelineConfig
from storepulse.fallback import StaticFallbackGenerator
from storepulse.models import CheckKind, PipelineOptions
from storepulse.pipeline import invoke_pipeline, perform_item_availability_check, perform_store_sla_check
from storepulse.storage import InMemoryStore, StoreResult

FAST = PipelineConfig(batch_size=50, api_timeout_ms=50, cooldown_ms=0)


class FakeInstamartClient:
    """Serves canned payloads; `hang_at` lists latitudes whose calls never return in time."""

    def __init__(self, serviceability_payload=None, availability_payload=None, hang_at=()):
        self.serviceability_payload = serviceability_payload
        self.availability_payload = availability_payload
        self.hang_at = set(hang_at)
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.calls = 0

    async def fetch_serviceability(self, lat, lng):
        self.calls += 1
        self.started.set()
        if lat in self.hang_at:
            await self.release.wait()
        return {"status": 200, "body": self.serviceability_payload(store_id=f"store-{lat}")}

    async def fetch_item_widgets(self, store_id, item_id, lat, lng):
        self.calls += 1
        return {"status": 200, "body": self.availability_payload(in_stock=item_id != "RC72JAN6NK", store_id=store_id)}

    async def close(self):
        pass


@pytest.fixture
def locations_csv(tmp_path):
    path = tmp_path / "locations.csv"
    path.write_text(
        "society_name,area,city,lat,lng\n"
        "Lodha Park,Worli,Mumbai,19.0158,72.8293\n"
        "Prestige Falcon,Kanakapura,Bengaluru,12.8851,77.5633\n"
        "DLF Phase 3,Gurugram,Delhi NCR,28.4949,77.0895\n"
    )
    return str(path)


@pytest.fixture
def item_list_csv(tmp_path):
    path = tmp_path / "item_list.csv"
    path.write_text("item_internal_name,product_id\namul_butter,A8S21QP2A1\nbread,RC72JAN6NK\n")
    return str(path)


@pytest.mark.asyncio
async def test_sla_check_with_one_timeout(locations_csv, serviceability_payload):
    """Three locations, the second times out: two successes, one fallback failure."""
    store = InMemoryStore()
    client = FakeInstamartClient(serviceability_payload, hang_at={12.8851})

    report = await invoke_pipeline(
        CheckKind.SERVICEABILITY,
        PipelineOptions(source="test"),
        store=store,
        client=client,
        fallback=StaticFallbackGenerator(store_id="1401248", sla="30 Mins"),
        config=FAST,
        locations_csv=locations_csv,
    )

    assert report.success is True
    assert report.summary.total == 3
    assert report.summary.successful == 2
    assert report.summary.failed == 1
    assert report.persisted is True

    failed = report.errors[0]
    assert failed["unit"]["name"] == "Prestige Falcon"
    assert "Timed out" in failed["error"]
    assert failed["fallback"]["store_id"] == "1401248"
    assert failed["fallback"]["sla"] == "30 Mins"

    rows = store.tables[SERVICEABILITY_TABLE]
    assert sorted(r["spot_name"] for r in rows) == ["DLF Phase 3", "Lodha Park"]


@pytest.mark.asyncio
async def test_sla_check_storage_failure_still_success(locations_csv, serviceability_payload):
    store = MagicMock()
    store.bulk_insert = AsyncMock(return_value=StoreResult(error="connection refused"))

    report = await invoke_pipeline(
        CheckKind.SERVICEABILITY,
        PipelineOptions(),
        store=store,
        client=FakeInstamartClient(serviceability_payload),
        config=FAST,
        locations_csv=locations_csv,
    )

    assert report.success is True
    assert report.persisted is False
    assert report.summary.failed == 0


@pytest.mark.asyncio
async def test_sla_check_explicit_locations(locations_csv, serviceability_payload):
    client = FakeInstamartClient(serviceability_payload)

    report = await perform_store_sla_check(
        explicit_unit_ids=["DLF Phase 3"],
        test_mode=True,
        store=InMemoryStore(),
        client=client,
        config=FAST,
        locations_csv=locations_csv,
    )

    assert report.summary.total == 1
    assert client.calls == 1
    assert report.results[0]["location_meta"]["society_name"] == "DLF Phase 3"
    assert report.persisted is None


@pytest.mark.asyncio
async def test_unit_load_failure_is_reported(tmp_path):
    client = FakeInstamartClient()

    report = await invoke_pipeline(
        CheckKind.SERVICEABILITY,
        PipelineOptions(),
        store=InMemoryStore(),
        client=client,
        locations_csv=str(tmp_path / "nope.csv"),
    )

    assert report.success is False
    assert report.summary is None
    assert "nope.csv" in report.error
    assert client.calls == 0


@pytest.mark.asyncio
async def test_availability_check_end_to_end(item_list_csv, availability_payload):
    store = InMemoryStore()
    await store.bulk_insert(SERVICEABILITY_TABLE, [
        {"store_id": "1385841", "serviceability": "SERVICEABLE", "spot_name": "Lodha Park",
         "spot_area": "Worli", "spot_city": "Mumbai", "spot_lat": 19.0158, "spot_lng": 72.8293},
        {"store_id": "1401248", "serviceability": "SERVICEABLE", "spot_name": "Prestige Falcon",
         "spot_area": "Kanakapura", "spot_city": "Bengaluru", "spot_lat": 12.8851, "spot_lng": 77.5633},
    ])

    report = await perform_item_availability_check(
        source="test",
        store=store,
        client=FakeInstamartClient(availability_payload=availability_payload),
        config=FAST,
        item_list_csv=item_list_csv,
    )

    assert report.success is True
    assert report.summary.total == 4
    assert report.summary.successful == 4
    assert report.summary.success_rate == 100.0
    rows = store.tables[AVAILABILITY_TABLE]
    assert {(r["store_id"], r["item_id"], r["available"]) for r in rows} == {
        ("1385841", "A8S21QP2A1", True),
        ("1385841", "RC72JAN6NK", False),
        ("1401248", "A8S21QP2A1", True),
        ("1401248", "RC72JAN6NK", False),
    }
    bands = {r["availability_band"] for r in report.results}
    assert bands == {"available", "unavailable"}


@pytest.mark.asyncio
async def test_overlapping_runs_of_same_kind_are_rejected(locations_csv, serviceability_payload):
    client = FakeInstamartClient(serviceability_payload, hang_at={19.0158})
    config = PipelineConfig(api_timeout_ms=5000, cooldown_ms=0)

    first = asyncio.create_task(invoke_pipeline(
        CheckKind.SERVICEABILITY, PipelineOptions(test_mode=True), store=InMemoryStore(),
        client=client, config=config, locations_csv=locations_csv,
    ))
    await asyncio.wait_for(client.started.wait(), timeout=1)

    second = await invoke_pipeline(
        CheckKind.SERVICEABILITY, PipelineOptions(test_mode=True), store=InMemoryStore(),
        client=client, config=config, locations_csv=locations_csv,
    )
    assert second.success is False
    assert second.message == "check already in progress"

    client.release.set()
    report = await first
    assert report.success is True
    assert report.summary.total == 3


@pytest.mark.asyncio
async def test_pipeline_creates_and_closes_its_own_client(locations_csv, serviceability_payload):
    with patch("storepulse.pipeline.InstamartClient") as mock_client_cls:
        instance = MagicMock()
        instance.fetch_serviceability = AsyncMock(
            return_value={"status": 200, "body": serviceability_payload()}
        )
        instance.close = AsyncMock()
        mock_client_cls.return_value = instance

        report = await invoke_pipeline(
            "serviceability",
            PipelineOptions(test_mode=True),
            store=InMemoryStore(),
            config=FAST,
            locations_csv=locations_csv,
        )

    assert report.success is True
    assert instance.fetch_serviceability.await_count == 3
    instance.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_default_store_carries_sla_rows_into_availability_check(
    monkeypatch, locations_csv, item_list_csv, serviceability_payload, availability_payload
):
    """Without credentials, back-to-back runs share one in-memory store."""
    monkeypatch.setattr(storage, "_default_store", None)
    monkeypatch.setattr(storage, "SUPABASE_URL", None)
    monkeypatch.setattr(storage, "SUPABASE_KEY", None)
    client = FakeInstamartClient(serviceability_payload, availability_payload)

    sla = await perform_store_sla_check(client=client, config=FAST, locations_csv=locations_csv)
    availability = await perform_item_availability_check(client=client, config=FAST, item_list_csv=item_list_csv)

    assert sla.persisted is True
    assert availability.success is True
    assert availability.summary.total == 6
    assert availability.persisted is True
    shared = storage.get_default_store()
    assert len(shared.tables[SERVICEABILITY_TABLE]) == 3
    assert len(shared.tables[AVAILABILITY_TABLE]) == 6
