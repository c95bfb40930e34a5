"""
Reshape raw Instamart payloads into ServiceabilityRecord / AvailabilityRecord.

The API shape is not under our control and drifts, so extraction is lenient:
every field is looked up independently, missing values become UNKNOWN (or None
for the availability flag), and a malformed nested block degrades to an
all-unknown record carrying `extraction_error` instead of raising.
"""
import json
from typing import Any, Dict, List, Optional, Tuple
from loguru import logger

from storepulse.classifier import parse_sla_minutes
from storepulse.models import (
    UNKNOWN,
    AvailabilityRecord,
    Location,
    Record,
    Serviceability,
    ServiceabilityRecord,
    StoreItemPair,
    now_iso,
)

DEFAULT_STORE_DESCRIPTION = "Instamart Store"


def _data_block(payload: Any) -> Optional[Dict[str, Any]]:
    """Return the `data` object of a response, or None when the payload is absent."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if data is None:
        return None
    if not isinstance(data, dict):
        raise TypeError(f"'data' is {type(data).__name__}, expected object")
    return data


def _child_blocks(data: Dict[str, Any], *keys: str) -> List[Dict[str, Any]]:
    blocks = []
    for key in keys:
        block = data.get(key)
        if block is None:
            continue
        if not isinstance(block, dict):
            raise TypeError(f"'{key}' is {type(block).__name__}, expected object")
        blocks.append(block)
    return blocks


def _lookup(blocks: List[Dict[str, Any]], *keys: str) -> Optional[Any]:
    """First non-empty value for any of `keys`, searching blocks in order."""
    for block in blocks:
        for key in keys:
            value = block.get(key)
            if value is not None and value != "":
                return value
    return None


def _text(value: Optional[Any]) -> str:
    if value is None:
        return UNKNOWN
    text = str(value).strip()
    return text or UNKNOWN


def format_sla_label(raw: Optional[Any]) -> str:
    """Normalize to "<n> Mins" (e.g. "12 MINS" or 12). Unparsable labels are kept as-is."""
    if raw is None or isinstance(raw, bool):
        return UNKNOWN
    minutes = parse_sla_minutes(raw)
    if minutes is None:
        return _text(raw)
    return f"{minutes} Mins"


def _serviceability_status(raw: Optional[Any]) -> str:
    if isinstance(raw, bool):
        return Serviceability.SERVICEABLE.value if raw else Serviceability.NOT_SERVICEABLE.value
    if raw is None:
        return Serviceability.UNKNOWN.value
    status = str(raw).strip().upper().replace(" ", "_")
    if status == Serviceability.SERVICEABLE.value:
        return status
    if status in ("NOT_SERVICEABLE", "UNSERVICEABLE", "NON_SERVICEABLE"):
        return Serviceability.NOT_SERVICEABLE.value
    return Serviceability.UNKNOWN.value


def describe_store(description: Optional[Any], locality: Optional[Any]) -> Tuple[str, str]:
    """
    Resolve (store_description, store_locality).

    Precedence: both given > description only > locality only > generic default.
    """
    description = None if description is None else _text(description)
    locality = None if locality is None else _text(locality)
    if description not in (None, UNKNOWN) and locality not in (None, UNKNOWN):
        return description, locality
    if description not in (None, UNKNOWN):
        return description, UNKNOWN
    if locality not in (None, UNKNOWN):
        return f"Instamart {locality}", locality
    return DEFAULT_STORE_DESCRIPTION, UNKNOWN


def unknown_serviceability(location: Location, timestamp: str, error: Optional[str] = None) -> ServiceabilityRecord:
    return ServiceabilityRecord(
        store_id=UNKNOWN,
        store_description=UNKNOWN,
        store_locality=UNKNOWN,
        sla=UNKNOWN,
        serviceability=Serviceability.UNKNOWN.value,
        location_meta=location.meta(),
        timestamp=timestamp,
        extraction_error=error,
    )


def unknown_availability(unit: StoreItemPair, timestamp: str, error: Optional[str] = None) -> AvailabilityRecord:
    return AvailabilityRecord(
        store_id=unit.store_id,
        item_id=unit.item_id,
        item_internal_name=unit.item_internal_name,
        item_name=UNKNOWN,
        brand=UNKNOWN,
        category=UNKNOWN,
        available=None,
        store_locality=UNKNOWN,
        store_description=UNKNOWN,
        spot=unit.spot(),
        coordinates=unit.coordinates(),
        timestamp=timestamp,
        extraction_error=error,
    )


def _preview(payload: Any) -> str:
    try:
        return json.dumps(payload, default=str)[:500]
    except (TypeError, ValueError):
        return repr(payload)[:500]


def extract_serviceability(payload: Any, location: Location, timestamp: Optional[str] = None) -> ServiceabilityRecord:
    """
    Extract store id, SLA label and serviceability from a home-page payload.

    Args:
        payload: Decoded JSON body (may be None).
        location: The location the call was made for.
        timestamp: Check time; defaults to now.

    Returns:
        ServiceabilityRecord: Never raises; unknown fields carry UNKNOWN.
    """
    timestamp = timestamp or now_iso()
    try:
        data = _data_block(payload)
        if data is None:
            logger.debug(f"🤷 No data block in serviceability payload for '{location.name}': {_preview(payload)}")
            return unknown_serviceability(location, timestamp)

        blocks = [data] + _child_blocks(data, "storeDetails", "storeDetailsV2")
        description, locality = describe_store(
            _lookup(blocks, "storeDescription", "description"),
            _lookup(blocks, "storeLocality", "locality"),
        )
        return ServiceabilityRecord(
            store_id=_text(_lookup(blocks, "storeId", "store_id")),
            store_description=description,
            store_locality=locality,
            sla=format_sla_label(_lookup(blocks, "slaString", "sla", "slaMins")),
            serviceability=_serviceability_status(_lookup(blocks, "serviceability", "serviceabilityStatus")),
            location_meta=location.meta(),
            timestamp=timestamp,
        )
    except Exception as e:
        logger.warning(f"⚠️ Failed to extract serviceability for '{location.name}': {e}")
        return unknown_serviceability(location, timestamp, error=f"Failed to extract serviceability data: {e}")


def _flag(value: Any) -> Optional[bool]:
    """Read a stock flag sent as a bool or as "true"/"false"; anything else is unknown."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "false"):
            return text == "true"
    return None


def _variation_in_stock(variation: Any) -> Optional[bool]:
    if not isinstance(variation, dict):
        raise TypeError(f"variation is {type(variation).__name__}, expected object")
    inventory = variation.get("inventory")
    if isinstance(inventory, dict):
        flag = _flag(inventory.get("inStock"))
        if flag is not None:
            return flag
    return _first_flag(variation, "inStock", "available", "isAvailable")


def _first_flag(block: Dict[str, Any], *keys: str) -> Optional[bool]:
    for key in keys:
        flag = _flag(block.get(key))
        if flag is not None:
            return flag
    return None


def _item_available(item: Dict[str, Any], variations: List[Dict[str, Any]], data: Dict[str, Any]) -> Optional[bool]:
    flags = [flag for flag in (_variation_in_stock(v) for v in variations) if flag is not None]
    if flags:
        return any(flags)
    flag = _first_flag(item, "inStock", "available", "isAvailable")
    if flag is not None:
        return flag
    # Older flat shape
    flag = _flag(data.get("available"))
    if flag is not None:
        return flag
    if data.get("availability") is not None:
        return str(data["availability"]).upper() == "AVAILABLE"
    return None


def extract_availability(payload: Any, unit: StoreItemPair, timestamp: Optional[str] = None) -> AvailabilityRecord:
    """Extract the in-stock flag plus item and store metadata from an item widgets payload."""
    timestamp = timestamp or now_iso()
    try:
        data = _data_block(payload)
        if data is None:
            logger.debug(f"🤷 No data block in availability payload for {unit.unit_id}: {_preview(payload)}")
            return unknown_availability(unit, timestamp)

        item_blocks = _child_blocks(data, "item")
        item = item_blocks[0] if item_blocks else {}
        variations = item.get("variations") or []
        if not isinstance(variations, list):
            raise TypeError(f"'variations' is {type(variations).__name__}, expected list")
        first_variation = variations[0] if variations and isinstance(variations[0], dict) else {}

        name_blocks = [item, first_variation, data]
        store_blocks = _child_blocks(data, "storeDetails") + [data]
        return AvailabilityRecord(
            store_id=_text(_lookup(store_blocks, "storeId") or unit.store_id),
            item_id=unit.item_id,
            item_internal_name=unit.item_internal_name,
            item_name=_text(_lookup(name_blocks, "displayName", "name", "itemName")),
            brand=_text(_lookup(name_blocks, "brand", "brandName")),
            category=_text(_lookup(name_blocks, "category", "categoryName")),
            available=_item_available(item, variations, data),
            store_locality=_text(_lookup(store_blocks, "storeLocality", "locality")),
            store_description=_text(_lookup(store_blocks, "storeDescription", "description")),
            spot=unit.spot(),
            coordinates=unit.coordinates(),
            timestamp=timestamp,
        )
    except Exception as e:
        logger.warning(f"⚠️ Failed to extract availability for {unit.unit_id}: {e}")
        return unknown_availability(unit, timestamp, error=f"Failed to extract availability data: {e}")


def is_recognized(record: Record) -> bool:
    """True when at least one field was actually read from the payload."""
    if record.extraction_error:
        return False
    if isinstance(record, ServiceabilityRecord):
        return (
            record.store_id != UNKNOWN
            or record.sla != UNKNOWN
            or record.serviceability != Serviceability.UNKNOWN.value
        )
    return (
        record.available is not None
        or record.item_name != UNKNOWN
        or record.brand != UNKNOWN
        or record.category != UNKNOWN
        or record.store_locality != UNKNOWN
        or record.store_description != UNKNOWN
    )
