"""
Location providers for the SOS engine

Supplies the user's current position on demand. A provider returns None
when no fix is available; the engine then asks it to prompt for permission.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from src.models.alert import LocationSnapshot, utcnow


class LocationProvider(ABC):
    """Source of the user's current location"""

    @abstractmethod
    async def get_current_location(self) -> Optional[LocationSnapshot]:
        """Return the current location, or None if unavailable"""
        pass

    def request_permission(self) -> None:
        """Ask the platform to prompt the user for location access"""
        pass


class StaticLocationProvider(LocationProvider):
    """Location provider backed by a fixed, updatable position"""

    def __init__(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        accuracy: Optional[float] = None,
        address: Optional[str] = None
    ):
        self.logger = logging.getLogger(__name__)
        self._location: Optional[LocationSnapshot] = None
        self.permission_requests = 0

        if latitude is not None and longitude is not None:
            self.update(latitude, longitude, accuracy, address)

    def update(self, latitude: float, longitude: float,
               accuracy: Optional[float] = None, address: Optional[str] = None) -> None:
        """Record a new position fix"""
        self._location = LocationSnapshot(
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            address=address
        )

    def clear(self) -> None:
        """Forget the current fix, as when location services are turned off"""
        self._location = None

    async def get_current_location(self) -> Optional[LocationSnapshot]:
        if self._location is None:
            return None
        # Each read is a fresh snapshot
        return LocationSnapshot(
            latitude=self._location.latitude,
            longitude=self._location.longitude,
            accuracy=self._location.accuracy,
            address=self._location.address,
            captured_at=utcnow()
        )

    def request_permission(self) -> None:
        self.permission_requests += 1
        self.logger.warning("Location unavailable, requesting location permission")


class ReverseGeocodingLocationProvider(LocationProvider):
    """
    Wraps another provider and fills in a missing address with a
    Nominatim-compatible reverse geocoding lookup.
    """

    def __init__(
        self,
        inner: LocationProvider,
        geocoder_url: str = "https://nominatim.openstreetmap.org/reverse",
        timeout_seconds: float = 5,
        user_agent: str = "SecureNow-SOS/1.0"
    ):
        self.logger = logging.getLogger(__name__)
        self.inner = inner
        self.geocoder_url = geocoder_url
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent

    async def get_current_location(self) -> Optional[LocationSnapshot]:
        location = await self.inner.get_current_location()
        if location is None or location.address:
            return location

        address = await self.reverse_geocode(location.latitude, location.longitude)
        if not address:
            return location

        return LocationSnapshot(
            latitude=location.latitude,
            longitude=location.longitude,
            accuracy=location.accuracy,
            address=address,
            captured_at=location.captured_at
        )

    def request_permission(self) -> None:
        self.inner.request_permission()

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[str]:
        """
        Look up a human-readable address for coordinates

        Args:
            latitude: Latitude in degrees
            longitude: Longitude in degrees

        Returns:
            Address string, or None if the lookup failed
        """
        params = {
            'lat': str(latitude),
            'lon': str(longitude),
            'format': 'jsonv2',
            'zoom': '18'
        }

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(
                    self.geocoder_url,
                    params=params,
                    headers={'User-Agent': self.user_agent}
                ) as response:
                    if response.status != 200:
                        self.logger.warning(f"Reverse geocoding returned status {response.status}")
                        return None
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning(f"Reverse geocoding failed: {e}")
            return None

        return self._format_address(data)

    def _format_address(self, data: dict) -> Optional[str]:
        """Join street, number, city and state like a placemark summary"""
        address = data.get('address') or {}
        parts = [
            address.get('road'),
            address.get('house_number'),
            address.get('city') or address.get('town') or address.get('village'),
            address.get('state'),
        ]
        joined = ", ".join(part for part in parts if part)
        if joined:
            return joined
        return data.get('display_name') or None
