# storepulse/config.py
from dataclasses import dataclass
from dotenv import load_dotenv
import os

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


# Storage credentials
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Runtime parameters
BATCH_SIZE = _env_int("BATCH_SIZE", 50)
API_TIMEOUT_MS = _env_int("API_TIMEOUT_MS", 10000)
COOLDOWN_MS = _env_int("COOLDOWN_MS", 1000)
MAX_PARALLEL = _env_int("MAX_PARALLEL", 50)
REQUESTS_PER_SECOND = _env_int("REQUESTS_PER_SECOND", 20)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Scheduler intervals (seconds)
SLA_CHECK_INTERVAL_S = _env_int("SLA_CHECK_INTERVAL_S", 300)
AVAILABILITY_CHECK_INTERVAL_S = _env_int("AVAILABILITY_CHECK_INTERVAL_S", 120)

# URLs
INSTAMART_BASE_URL = "https://www.swiggy.com/api/instamart"
SERVICEABILITY_URL = f"{INSTAMART_BASE_URL}/home?clientId=INSTAMART-APP"
ITEM_WIDGETS_URL = INSTAMART_BASE_URL + "/item/{item_id}/widgets?storeId={store_id}&primaryStoreId={store_id}"

# File names
LOCATIONS_CSV = os.getenv("LOCATIONS_CSV", "locations.csv")
ITEM_LIST_CSV = os.getenv("ITEM_LIST_CSV", "item_list.csv")

# Tables (defaults match the deployed schema, typo included)
SERVICEABILITY_TABLE = os.getenv("SERVICEABILITY_TABLE", "store_serviceablity")
AVAILABILITY_TABLE = os.getenv("AVAILABILITY_TABLE", "item_availability")


@dataclass(frozen=True)
class PipelineConfig:
    """Knobs for one pipeline invocation, passed into the prober and coordinator."""
    batch_size: int = BATCH_SIZE
    api_timeout_ms: int = API_TIMEOUT_MS
    cooldown_ms: int = COOLDOWN_MS
    max_parallel: int = MAX_PARALLEL

    @property
    def api_timeout_s(self) -> float:
        return self.api_timeout_ms / 1000.0

    @property
    def cooldown_s(self) -> float:
        return self.cooldown_ms / 1000.0
