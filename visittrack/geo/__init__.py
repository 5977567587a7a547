"""
Geolocation and routing collaborators
"""

from .estimator import DistanceEstimator
from .models import RouteEstimate
from .provider import GeolocationProvider, StaticGeolocationProvider, capture_location
from .routes_client import GoogleRoutesClient

__all__ = [
    "DistanceEstimator",
    "GeolocationProvider",
    "GoogleRoutesClient",
    "RouteEstimate",
    "StaticGeolocationProvider",
    "capture_location",
]
