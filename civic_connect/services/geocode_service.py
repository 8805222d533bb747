import asyncio
import logging
from typing import Optional

import aiohttp

from civic_connect.utils.location import format_coordinate

logger = logging.getLogger(__name__)

USER_AGENT = "civic-connect/1.0 (issue reporting)"


class ReverseGeocoder:
    """Turns a coordinate into a display address via OpenStreetMap Nominatim."""

    def __init__(self, base_url: str, timeout: float = 8.0, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
            self._owns_session = True
        return self._session

    async def reverse_geocode(self, lat: float, lng: float) -> str:
        """Best-effort address; falls back to the formatted coordinate on any failure."""
        fallback = format_coordinate(lat, lng)
        params = {
            "format": "json",
            "lat": str(lat),
            "lon": str(lng),
            "zoom": "18",
            "addressdetails": "1",
        }
        try:
            session = await self._get_session()
            async with session.get(
                self.base_url, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as resp:
                if resp.status != 200:
                    logger.warning(f"⚠️ Reverse geocode returned HTTP {resp.status} for {fallback}")
                    return fallback
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"⚠️ Reverse geocode failed for {fallback}: {e}")
            return fallback

        address = data.get("display_name") if isinstance(data, dict) else None
        return address or fallback

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
