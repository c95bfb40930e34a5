"""
Record store used to persist check results.

Stores report failures through `StoreResult.error` rather than raising, so
callers must check it.
"""
import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence
from urllib.parse import urlparse

from loguru import logger
from supabase import acreate_client

from storepulse.config import AVAILABILITY_TABLE, SERVICEABILITY_TABLE, SUPABASE_KEY, SUPABASE_URL
from storepulse.models import Serviceability, now_iso

FILTER_OPS = ("eq", "ilike", "gte", "lte")


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter op '{self.op}', expected one of {FILTER_OPS}")


@dataclass
class StoreResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    count: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RecordStore(Protocol):
    async def bulk_insert(self, table: str, records: Sequence[Dict[str, Any]]) -> StoreResult:
        ...

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: str = "created_at",
        descending: bool = True,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> StoreResult:
        ...


def _page_bounds(page: Optional[int], page_size: Optional[int]) -> Optional[tuple]:
    if page and page_size:
        offset = (page - 1) * page_size
        return offset, offset + page_size - 1
    return None


class SupabaseStore:
    """
    RecordStore backed by a Supabase (PostgREST) project.

    Uses the async client so requests never block the event loop; the client
    is created on first use.
    """

    def __init__(self, url: str, key: str, client=None):
        self.url = url
        self.key = key
        self._client = client

    async def _get_client(self):
        """Get or create the async Supabase client."""
        if self._client is None:
            self._client = await acreate_client(self.url, self.key)
        return self._client

    async def bulk_insert(self, table: str, records: Sequence[Dict[str, Any]]) -> StoreResult:
        try:
            client = await self._get_client()
            resp = await client.table(table).insert(list(records)).execute()
            data = resp.data or []
            return StoreResult(records=data, count=len(data))
        except Exception as e:
            logger.error(f"Supabase insert into {table} failed: {e}")
            return StoreResult(error=str(e))

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: str = "created_at",
        descending: bool = True,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> StoreResult:
        try:
            client = await self._get_client()
            q = client.table(table).select("*", count="exact")
            for f in filters:
                value = f"%{f.value}%" if f.op == "ilike" else f.value
                q = getattr(q, f.op)(f.column, value)
            q = q.order(order_by, desc=descending)
            bounds = _page_bounds(page, page_size)
            if bounds:
                q = q.range(*bounds)
            elif limit:
                q = q.limit(limit)
            resp = await q.execute()
            data = resp.data or []
            return StoreResult(records=data, count=resp.count if resp.count is not None else len(data))
        except Exception as e:
            logger.error(f"Supabase query on {table} failed: {e}")
            return StoreResult(error=str(e))


class InMemoryStore:
    """RecordStore kept in process memory; used without Supabase credentials and in tests."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self._ids = itertools.count(1)

    async def bulk_insert(self, table: str, records: Sequence[Dict[str, Any]]) -> StoreResult:
        rows = self.tables.setdefault(table, [])
        inserted = []
        for record in records:
            row = dict(record)
            row.setdefault("id", next(self._ids))
            row.setdefault("created_at", now_iso())
            rows.append(row)
            inserted.append(dict(row))
        logger.debug(f"In-memory insert of {len(inserted)} rows into {table}")
        return StoreResult(records=inserted, count=len(inserted))

    @staticmethod
    def _matches(row: Dict[str, Any], f: Filter) -> bool:
        value = row.get(f.column)
        if f.op == "eq":
            return value == f.value
        if value is None:
            return False
        if f.op == "ilike":
            return str(f.value).lower() in str(value).lower()
        if f.op == "gte":
            return value >= f.value
        return value <= f.value

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: str = "created_at",
        descending: bool = True,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> StoreResult:
        rows = [r for r in self.tables.get(table, []) if all(self._matches(r, f) for f in filters)]
        # Stable sort; rows missing the column go last either way.
        present = [r for r in rows if r.get(order_by) is not None]
        missing = [r for r in rows if r.get(order_by) is None]
        present.sort(key=lambda r: r[order_by], reverse=descending)
        rows = present + missing
        count = len(rows)

        bounds = _page_bounds(page, page_size)
        if bounds:
            rows = rows[bounds[0]:bounds[1] + 1]
        elif limit:
            rows = rows[:limit]
        return StoreResult(records=[dict(r) for r in rows], count=count)


def _valid_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def create_store(url: Optional[str] = None, key: Optional[str] = None) -> RecordStore:
    """Supabase when credentials look valid, otherwise an in-memory store."""
    url = url if url is not None else SUPABASE_URL
    key = key if key is not None else SUPABASE_KEY
    if not key or not _valid_url(url):
        logger.warning("Supabase URL or key missing or invalid; using in-memory store")
        return InMemoryStore()
    return SupabaseStore(url, key)


_default_store: Optional[RecordStore] = None


def get_default_store() -> RecordStore:
    """
    Process-wide store shared by every pipeline invocation.

    Without credentials this is one InMemoryStore, so rows written by the SLA
    check are visible to the availability check that follows.
    """
    global _default_store
    if _default_store is None:
        _default_store = create_store()
    return _default_store


async def get_latest_serviceability(store: RecordStore) -> StoreResult:
    """All serviceability rows, newest first."""
    return await store.query(SERVICEABILITY_TABLE, order_by="created_at", descending=True)


async def get_location_history(store: RecordStore, spot_name: str, limit: int = 50) -> StoreResult:
    if not spot_name:
        raise ValueError("spot_name is required")
    return await store.query(
        SERVICEABILITY_TABLE,
        filters=[Filter("spot_name", "eq", spot_name)],
        order_by="created_at",
        descending=True,
        limit=limit,
    )


async def get_item_availability_results(
    store: RecordStore,
    filters: Optional[Dict[str, Any]] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> StoreResult:
    """
    Query item availability rows.

    Args:
        filters: Any of store_id, item_id, available (exact); item_name, spot_name,
                 spot_area, spot_city (substring); date_from, date_to (created_at bounds).
    """
    filters = filters or {}
    exact = ("store_id", "item_id")
    partial = ("item_name", "spot_name", "spot_area", "spot_city")
    clauses = [Filter(col, "eq", filters[col]) for col in exact if filters.get(col)]
    clauses += [Filter(col, "ilike", filters[col]) for col in partial if filters.get(col)]
    if filters.get("available") is not None:
        clauses.append(Filter("available", "eq", filters["available"]))
    if filters.get("date_from"):
        clauses.append(Filter("created_at", "gte", filters["date_from"]))
    if filters.get("date_to"):
        clauses.append(Filter("created_at", "lte", filters["date_to"]))
    return await store.query(
        AVAILABILITY_TABLE,
        filters=clauses,
        order_by=sort_by,
        descending=sort_order != "asc",
        page=page,
        page_size=page_size,
    )


async def get_item_availability_stats(store: RecordStore) -> Dict[str, Any]:
    result = await store.query(AVAILABILITY_TABLE)
    if not result.ok:
        return {"success": False, "error": result.error, "stats": {}}

    rows = result.records
    available = sum(1 for r in rows if r.get("available") is True)
    unavailable = sum(1 for r in rows if r.get("available") is False)
    stats = {
        "total_checks": len(rows),
        "available_count": available,
        "unavailable_count": unavailable,
        "null_count": sum(1 for r in rows if r.get("available") is None),
        "availability_rate": round(available / len(rows) * 100, 2) if rows else 0.0,
        "unique_items": len({r.get("item_id") for r in rows}),
        "unique_stores": len({r.get("store_id") for r in rows}),
        "last_updated": max((r["created_at"] for r in rows if r.get("created_at")), default=None),
    }
    return {"success": True, "stats": stats}


def latest_serviceable_stores(rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Newest row per store_id, keeping only SERVICEABLE ones. `rows` must be newest first."""
    seen = set()
    stores = []
    for row in rows:
        store_id = row.get("store_id")
        if store_id in seen or store_id is None:
            continue
        seen.add(store_id)
        if row.get("serviceability") == Serviceability.SERVICEABLE.value:
            stores.append(row)
    return stores
