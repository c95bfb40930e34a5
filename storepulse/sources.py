from typing import Dict, List, Optional, Sequence
import pandas as pd
from loguru import logger

from storepulse.config import ITEM_LIST_CSV, LOCATIONS_CSV
from storepulse.errors import UnitLoadError
from storepulse.models import UNKNOWN, Location
from storepulse.storage import RecordStore, get_latest_serviceability, latest_serviceable_stores


def _read_csv(file_path: str, required: Sequence[Sequence[str]]) -> pd.DataFrame:
    """Read a CSV; every entry in `required` lists accepted aliases for one column."""
    try:
        df = pd.read_csv(file_path, dtype=str)
    except Exception as e:
        raise UnitLoadError(f"Could not read {file_path}: {e}") from e

    missing = [aliases[0] for aliases in required if not any(a in df.columns for a in aliases)]
    if missing:
        raise UnitLoadError(f"{file_path} is missing column(s): {', '.join(missing)}")
    return df


def _pick(row: pd.Series, *cols: str) -> Optional[str]:
    for col in cols:
        if col in row.index and pd.notna(row[col]) and str(row[col]).strip():
            return str(row[col]).strip()
    return None


def load_locations(file_path: str = LOCATIONS_CSV) -> List[Location]:
    """Load serviceability locations from CSV and convert to Location objects."""
    df = _read_csv(file_path, [("society_name", "name"), ("lat",), ("lng",)])
    locations = []
    for idx, row in df.iterrows():
        name = _pick(row, "society_name", "name")
        try:
            lat = float(_pick(row, "lat"))
            lng = float(_pick(row, "lng"))
        except (TypeError, ValueError) as e:
            raise UnitLoadError(f"{file_path} row {idx}: bad coordinates") from e
        locations.append(Location(
            name=name or UNKNOWN,
            lat=lat,
            lng=lng,
            area=_pick(row, "area") or UNKNOWN,
            city=_pick(row, "city") or UNKNOWN,
        ))
    logger.info(f"Loaded {len(locations)} locations from {file_path}")
    return locations


def load_item_list(file_path: str = ITEM_LIST_CSV) -> List[Dict[str, str]]:
    """Load items to check as dicts with product_id and item_internal_name."""
    df = _read_csv(file_path, [("product_id",)])
    items = []
    for _, row in df.iterrows():
        product_id = _pick(row, "product_id")
        if not product_id:
            continue
        items.append({
            "product_id": product_id,
            "item_internal_name": _pick(row, "item_internal_name") or UNKNOWN,
        })
    logger.info(f"Loaded {len(items)} items from {file_path}")
    return items


async def load_serviceable_stores(store: RecordStore) -> List[Dict]:
    """
    Serviceable stores from the latest serviceability results, one per store id.

    Raises:
        UnitLoadError: The query failed or returned no serviceable store.
    """
    logger.info("Fetching store serviceability data from database...")
    result = await get_latest_serviceability(store)
    if not result.ok:
        raise UnitLoadError(f"Failed to fetch store serviceability data: {result.error}")

    stores = []
    for row in latest_serviceable_stores(result.records):
        try:
            lat = float(row["spot_lat"])
            lng = float(row["spot_lng"])
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Skipping store {row.get('store_id')} with no coordinates")
            continue
        stores.append({
            "store_id": str(row["store_id"]),
            "lat": lat,
            "lng": lng,
            "spot_name": row.get("spot_name") or UNKNOWN,
            "spot_area": row.get("spot_area") or UNKNOWN,
            "spot_city": row.get("spot_city") or UNKNOWN,
            "sla": row.get("sla"),
            "last_checked": row.get("created_at"),
        })

    if not stores:
        raise UnitLoadError("No serviceable stores found in database")
    logger.info(f"Loaded {len(stores)} serviceable stores from database")
    return stores
