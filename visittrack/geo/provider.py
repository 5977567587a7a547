"""
Geolocation providers
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from pydantic import ValidationError

from visittrack.core.errors import LocationUnavailable
from visittrack.core.models import CheckpointAction, GeoReading, utcnow

logger = logging.getLogger(__name__)


class GeolocationProvider(ABC):
    """Source of checkpoint readings"""

    @abstractmethod
    async def locate(self, action: CheckpointAction) -> GeoReading:
        """
        Take a reading for a checkpoint

        Args:
            action: Checkpoint the reading is for

        Returns:
            GeoReading with coordinates and timestamp

        Raises:
            LocationUnavailable: If permission is denied or no fix is available
        """
        pass


class StaticGeolocationProvider(GeolocationProvider):
    """
    Provider returning caller-supplied coordinates
    Used when the client device has already resolved its position
    """

    def __init__(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        timestamp: Optional[datetime] = None,
        accuracy: Optional[float] = None,
    ):
        self.latitude = latitude
        self.longitude = longitude
        self.timestamp = timestamp
        self.accuracy = accuracy

    async def locate(self, action: CheckpointAction) -> GeoReading:
        if self.latitude is None or self.longitude is None:
            raise LocationUnavailable(
                f"No location supplied for {action.value}. "
                "Please enable location access and try again."
            )
        try:
            return GeoReading(
                latitude=self.latitude,
                longitude=self.longitude,
                timestamp=self.timestamp or utcnow(),
                accuracy=self.accuracy,
            )
        except ValidationError as e:
            raise LocationUnavailable(f"Invalid coordinates for {action.value}: {e}")


async def capture_location(
    provider: GeolocationProvider, action: CheckpointAction, timeout: float
) -> GeoReading:
    """
    Read a location, enforcing a timeout

    Args:
        provider: Geolocation provider
        action: Checkpoint the reading is for
        timeout: Seconds to wait for the provider

    Returns:
        GeoReading

    Raises:
        LocationUnavailable: On provider failure or timeout
    """
    try:
        reading = await asyncio.wait_for(provider.locate(action), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Location request for {action.value} timed out after {timeout}s")
        raise LocationUnavailable("Location request timed out. Please try again.")

    logger.debug(
        f"Location captured for {action.value}: {reading.latitude}, {reading.longitude} "
        f"(accuracy {reading.accuracy} m)"
    )
    return reading
