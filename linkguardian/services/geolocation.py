import asyncio
import logging
from typing import Optional

import geoip2.database
import geoip2.errors
import maxminddb

logger = logging.getLogger(__name__)


class GeoIPService:
    """Country/city lookup against a local GeoLite2-City database.

    The reader is opened lazily on first use; a missing or corrupt database
    disables lookups instead of failing requests.
    """

    def __init__(self, city_db_path: str):
        self._city_db_path = city_db_path
        self._reader: Optional[geoip2.database.Reader] = None
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _get_reader(self) -> Optional[geoip2.database.Reader]:
        if not self._loaded:
            async with self._lock:
                if not self._loaded:
                    try:
                        self._reader = await asyncio.to_thread(geoip2.database.Reader, self._city_db_path)
                    except (OSError, maxminddb.InvalidDatabaseError) as e:
                        logger.warning(f"GeoIP database unavailable at {self._city_db_path}: {e}")
                        self._reader = None
                    self._loaded = True
        return self._reader

    async def lookup(self, ip: Optional[str]) -> Optional[dict]:
        if not ip:
            return None
        reader = await self._get_reader()
        if reader is None:
            return None
        try:
            result = await asyncio.to_thread(reader.city, ip)
        except (geoip2.errors.AddressNotFoundError, ValueError, maxminddb.InvalidDatabaseError):
            return None
        return {"country": result.country.iso_code, "city": result.city.name}

    def close(self):
        if self._reader is not None:
            self._reader.close()
