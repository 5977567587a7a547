"""
Routing data models
"""

from typing import Optional

from pydantic import BaseModel, Field

METERS_TO_MILES = 0.000621371


class RouteEstimate(BaseModel):
    """Driving route between two checkpoints"""

    distance_miles: float = Field(ge=0, description="Driving distance in miles")
    estimated_toll_cost: Optional[float] = Field(None, ge=0, description="Estimated tolls")
    duration_seconds: Optional[int] = Field(None, description="Expected driving time")
    currency_code: Optional[str] = Field(None, description="Currency of the toll estimate")
