"""
Instamart API client with rate limiting using aiolimiter.
"""
import json
from typing import Any, Dict, Optional
from urllib.parse import quote

from aiohttp import ClientSession, ClientTimeout
from aiolimiter import AsyncLimiter
from loguru import logger

from storepulse.config import (
    API_TIMEOUT_MS,
    ITEM_WIDGETS_URL,
    REQUESTS_PER_SECOND,
    SERVICEABILITY_URL,
)
from storepulse.errors import InstamartApiError

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

# Session cookie minus the location; the API reads coordinates from `userLocation`.
BASE_COOKIE = (
    "platform=web; subplatform=dweb; ally-on=false; bottomOffset=0; "
    "genieTrackOn=false; isNative=false; openIMHP=false; statusBarHeight=0; strId=; versionCode=1200"
)


def location_cookie(lat: float, lng: float) -> str:
    user_location = quote(json.dumps({"lat": lat, "lng": lng}, separators=(",", ":")), safe="")
    return f"userLocation={user_location}; {BASE_COOKIE}"


def location_headers(lat: float, lng: float) -> Dict[str, str]:
    return {
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
        "Cookie": location_cookie(lat, lng),
    }


class InstamartClient:
    """
    Client for the Instamart JSON endpoints.
    Uses AsyncLimiter for rate limiting; one aiohttp session per client.
    """

    def __init__(self, requests_per_second: int = REQUESTS_PER_SECOND, timeout_ms: int = API_TIMEOUT_MS):
        self.rate_limiter = AsyncLimiter(max_rate=requests_per_second, time_period=1.0)
        self.timeout = ClientTimeout(total=timeout_ms / 1000.0)
        self._session: Optional[ClientSession] = None

    async def _get_session(self) -> ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=self.timeout)
        return self._session

    async def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Send a GET request and return the parsed JSON response.

        Args:
            url: Target URL to request.
            headers: Optional HTTP headers.

        Returns:
            Dict[str, Any]: {"status": HTTP status, "body": parsed JSON body, or None
            when a 2xx body is not valid JSON}.

        Raises:
            InstamartApiError: The API answered with a non-2xx status.
        """
        async with self.rate_limiter:
            session = await self._get_session()
            try:
                async with session.get(url, headers=headers) as resp:
                    if resp.status < 200 or resp.status >= 300:
                        raise InstamartApiError(resp.status, resp.reason, url)
                    try:
                        body = await resp.json(content_type=None)
                    except ValueError as e:
                        # The call itself succeeded; an unreadable body is a shape problem
                        logger.debug(f"🤷 Non-JSON body from {url} (HTTP {resp.status}): {e}")
                        body = None
                    return {"status": resp.status, "body": body}
            except Exception as e:
                logger.debug(f"⚠️ Instamart GET request failed: {e}")
                raise

    async def fetch_serviceability(self, lat: float, lng: float) -> Dict[str, Any]:
        return await self.get_json(SERVICEABILITY_URL, headers=location_headers(lat, lng))

    async def fetch_item_widgets(self, store_id: str, item_id: str, lat: float, lng: float) -> Dict[str, Any]:
        url = ITEM_WIDGETS_URL.format(item_id=quote(str(item_id), safe=""), store_id=quote(str(store_id), safe=""))
        return await self.get_json(url, headers=location_headers(lat, lng))

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
