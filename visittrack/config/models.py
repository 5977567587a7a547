"""
Settings models for visittrack
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ConfigFormat(str, Enum):
    """Supported settings file formats"""

    YAML = "yaml"
    JSON = "json"


class TrackerSettings(BaseModel):
    """Runtime settings for the travel tracker"""

    database_url: str = Field(
        "sqlite:///visittrack.db",
        description="SQLAlchemy database URL"
    )

    # Reimbursement
    mileage_rate: float = Field(
        0.67,
        description="Reimbursement rate in currency per mile",
        ge=0
    )

    # Leaving decision
    next_appointment_lookahead_minutes: int = Field(
        720,
        description="How far ahead to look for a chained appointment",
        gt=0
    )

    # Geolocation
    geolocation_timeout: float = Field(
        15.0,
        description="Seconds to wait for a location reading",
        gt=0
    )
    same_location_tolerance: float = Field(
        0.0001,
        description="Degrees within which two readings count as the same place",
        ge=0
    )
    low_accuracy_meters: float = Field(
        100.0,
        description="Accuracy radius above which a checkpoint reading is flagged",
        gt=0
    )

    # Routing
    google_maps_api_key: Optional[str] = Field(
        None,
        description="Google Routes API key"
    )
    routes_timeout: int = Field(
        30,
        description="HTTP timeout for route requests in seconds",
        gt=0
    )
    toll_passes: List[str] = Field(
        default_factory=lambda: ["US_TX_TXTAG", "US_TX_EZTAG"],
        description="Toll passes the vehicles carry"
    )

    @field_validator("toll_passes", mode="before")
    @classmethod
    def split_toll_passes(cls, v):
        """Accept a comma-separated string from the environment"""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v
