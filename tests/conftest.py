import pytest

from storepulse.models import Location, StoreItemPair


@pytest.fixture
def locations():
    return [
        Location(name="Lodha Park", lat=19.0158, lng=72.8293, area="Worli", city="Mumbai"),
        Location(name="Prestige Falcon", lat=12.8851, lng=77.5633, area="Kanakapura", city="Bengaluru"),
        Location(name="DLF Phase 3", lat=28.4949, lng=77.0895, area="Gurugram", city="Delhi NCR"),
    ]


@pytest.fixture
def store_item():
    return StoreItemPair(
        store_id="1385841",
        lat=19.0158,
        lng=72.8293,
        item_id="A8S21QP2A1",
        item_internal_name="amul_butter_100g",
        spot_name="Lodha Park",
        spot_area="Worli",
        spot_city="Mumbai",
    )


@pytest.fixture
def serviceability_payload():
    def build(store_id="1385841", sla="12 MINS", status="SERVICEABLE"):
        return {
            "statusCode": 0,
            "data": {
                "storeId": store_id,
                "slaString": sla,
                "serviceability": status,
                "storeDetails": {"description": "Instamart Worli", "locality": "Worli"},
            },
        }
    return build


@pytest.fixture
def availability_payload():
    def build(in_stock=True, store_id="1385841"):
        return {
            "data": {
                "item": {
                    "displayName": "Amul Butter",
                    "brand": "Amul",
                    "category": "Dairy",
                    "variations": [{"inventory": {"inStock": in_stock}}],
                },
                "storeDetails": {"storeId": store_id, "locality": "Worli", "description": "Instamart Worli"},
            }
        }
    return build
