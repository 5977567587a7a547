"""
Google Routes API client for driving distance and toll estimates
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from visittrack.core.errors import EstimatorUnavailable
from visittrack.core.models import GeoReading

from .estimator import DistanceEstimator
from .models import METERS_TO_MILES, RouteEstimate

DEFAULT_TOLL_PASSES = ["US_TX_TXTAG", "US_TX_EZTAG"]


class GoogleRoutesClient(DistanceEstimator):
    """
    Async client for the Google Routes API
    Computes traffic-aware driving distance with toll estimates
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: int = 30,
        toll_passes: Optional[List[str]] = None,
    ):
        self.api_key = api_key or os.getenv("GOOGLE_MAPS_API_KEY")
        self.base_url = "https://routes.googleapis.com"
        self.timeout = timeout
        self.toll_passes = DEFAULT_TOLL_PASSES if toll_passes is None else toll_passes
        self.logger = logging.getLogger(__name__)

        if not self.api_key:
            raise ValueError("Google Maps API key required. Set GOOGLE_MAPS_API_KEY")

    @property
    def headers(self) -> Dict[str, str]:
        """HTTP headers for API requests"""
        return {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": "routes.duration,routes.distanceMeters,routes.travelAdvisory.tollInfo",
        }

    def build_request(self, start: GeoReading, end: GeoReading) -> Dict[str, Any]:
        """Build a computeRoutes request body"""
        request_body = {
            "origin": {
                "location": {
                    "latLng": {"latitude": start.latitude, "longitude": start.longitude}
                }
            },
            "destination": {
                "location": {
                    "latLng": {"latitude": end.latitude, "longitude": end.longitude}
                }
            },
            "travelMode": "DRIVE",
            "routingPreference": "TRAFFIC_AWARE",
            "extraComputations": ["TOLLS"],
            "routeModifiers": {
                "vehicleInfo": {"emissionType": "GASOLINE"},
            },
            "units": "IMPERIAL",
        }

        if self.toll_passes:
            request_body["routeModifiers"]["tollPasses"] = list(self.toll_passes)

        return request_body

    async def estimate(self, start: GeoReading, end: GeoReading) -> RouteEstimate:
        """
        Calculate driving distance and tolls between two readings

        Args:
            start: Start checkpoint
            end: End checkpoint

        Returns:
            RouteEstimate with distance in miles

        Raises:
            EstimatorUnavailable: On HTTP errors or when no route is returned
        """
        origin = f"{start.latitude},{start.longitude}"
        destination = f"{end.latitude},{end.longitude}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/directions/v2:computeRoutes",
                    headers=self.headers,
                    json=self.build_request(start, end),
                )
                response.raise_for_status()

                data = response.json()

        except httpx.HTTPError as e:
            self.logger.error(f"HTTP error computing route {origin} -> {destination}: {e}")
            raise EstimatorUnavailable(f"Routes API request failed: {e}")

        routes = data.get("routes") or []
        if not routes:
            self.logger.error(f"No routes returned for {origin} -> {destination}")
            raise EstimatorUnavailable("Routes API returned no routes")

        try:
            estimate = self._parse_route(routes[0])
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            self.logger.error(f"Error parsing route response for {origin} -> {destination}: {e}")
            raise EstimatorUnavailable(f"Unreadable Routes API response: {e}")

        self.logger.debug(
            f"Route {origin} -> {destination}: {estimate.distance_miles:.2f} miles, "
            f"tolls {estimate.estimated_toll_cost}"
        )
        return estimate

    def _parse_route(self, route: Dict[str, Any]) -> RouteEstimate:
        """Parse a single route into a RouteEstimate"""
        distance_meters = route.get("distanceMeters", 0)
        distance_miles = round(distance_meters * METERS_TO_MILES, 2)

        duration_seconds = None
        if route.get("duration"):
            duration_seconds = int(float(str(route["duration"]).rstrip("s")))

        estimated_toll_cost = None
        currency_code = None
        toll_info = (route.get("travelAdvisory") or {}).get("tollInfo")
        if toll_info and toll_info.get("estimatedPrice"):
            # Money: whole units as a string plus nanos
            price = toll_info["estimatedPrice"][0]
            amount = int(price.get("units", 0) or 0) + price.get("nanos", 0) / 1_000_000_000
            estimated_toll_cost = round(amount, 2)
            currency_code = price.get("currencyCode")

        return RouteEstimate(
            distance_miles=distance_miles,
            estimated_toll_cost=estimated_toll_cost,
            duration_seconds=duration_seconds,
            currency_code=currency_code,
        )
