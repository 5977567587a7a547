"""
Distance & toll estimator interface
"""

from abc import ABC, abstractmethod

from visittrack.core.models import GeoReading

from .models import RouteEstimate


class DistanceEstimator(ABC):
    """Driving distance and toll estimates between two points"""

    @abstractmethod
    async def estimate(self, start: GeoReading, end: GeoReading) -> RouteEstimate:
        """
        Estimate the driving route between two readings

        Raises:
            EstimatorUnavailable: If no route could be produced
        """
        pass
