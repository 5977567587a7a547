"""
Mileage and reimbursement calculations
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from visittrack.core.errors import EstimatorUnavailable
from visittrack.core.models import (
    DailyTravelSummary,
    GeoReading,
    MileageEstimate,
    TravelLeg,
)
from visittrack.geo.estimator import DistanceEstimator


def compute_reimbursement(
    outbound_miles: float,
    return_miles: float,
    toll_cost: float,
    rate_per_mile: float,
) -> float:
    """
    Reimbursement owed for a visit

    Args:
        outbound_miles: Miles driven to the visit
        return_miles: Miles driven back
        toll_cost: Tolls to add on top of mileage
        rate_per_mile: Currency per mile

    Returns:
        Total rounded to cents
    """
    total = (outbound_miles + return_miles) * rate_per_mile + toll_cost
    return round(total, 2)


def effective_toll_cost(leg: Optional[TravelLeg]) -> float:
    """Confirmed actual toll first, then the estimate, else nothing"""
    if leg is None:
        return 0.0
    if leg.toll_confirmed and leg.actual_toll_cost is not None:
        return leg.actual_toll_cost
    if leg.estimated_toll_cost is not None:
        return leg.estimated_toll_cost
    return 0.0


def duration_minutes(start: datetime, end: datetime) -> int:
    return round((end - start).total_seconds() / 60)


def summarize_legs(
    staff_user_id: str, day, legs: Iterable[TravelLeg]
) -> DailyTravelSummary:
    """Totals over the completed legs of one day"""
    summary = DailyTravelSummary(staff_user_id=staff_user_id, day=day)
    for leg in legs:
        if not leg.is_completed:
            continue
        summary.total_legs += 1
        summary.total_mileage += leg.effective_mileage
        summary.total_tolls += effective_toll_cost(leg)
        summary.total_duration += leg.duration_minutes or 0

    summary.total_mileage = round(summary.total_mileage, 2)
    summary.total_tolls = round(summary.total_tolls, 2)
    return summary


class MileageCalculator:
    """Turns checkpoint pairs into mileage and toll figures"""

    def __init__(
        self,
        estimator: Optional[DistanceEstimator] = None,
        same_location_tolerance: float = 0.0001,
    ):
        self.estimator = estimator
        self.same_location_tolerance = same_location_tolerance
        self.logger = logging.getLogger(__name__)

    def _nearly_same(self, start: GeoReading, end: GeoReading) -> bool:
        return (
            abs(start.latitude - end.latitude) < self.same_location_tolerance
            and abs(start.longitude - end.longitude) < self.same_location_tolerance
        )

    async def compute_mileage(self, start: GeoReading, end: GeoReading) -> MileageEstimate:
        """
        Estimate mileage between two readings

        Identical coordinates never reach the estimator. When the estimator
        fails for points within the tolerance, the distance is taken as zero.

        Raises:
            EstimatorUnavailable: If the estimator fails for distinct points
        """
        if start.same_point(end):
            return MileageEstimate(mileage_miles=0.0)

        try:
            if self.estimator is None:
                raise EstimatorUnavailable("No distance estimator configured")
            route = await self.estimator.estimate(start, end)
        except EstimatorUnavailable:
            if self._nearly_same(start, end):
                self.logger.warning("Estimator unavailable; readings within tolerance, using 0 miles")
                return MileageEstimate(mileage_miles=0.0)
            raise

        return MileageEstimate(
            mileage_miles=route.distance_miles,
            estimated_toll_cost=route.estimated_toll_cost,
            duration_seconds=route.duration_seconds,
        )
