"""
Core data models, errors and persistence for visittrack
"""

from .db import AppointmentRecord, Database, TravelLegRecord, compute_travel_flags, init_db
from .errors import (
    ConflictError,
    EstimatorUnavailable,
    InvalidInput,
    InvalidTransition,
    LocationUnavailable,
    TrackerError,
)
from .models import (
    Appointment,
    AppointmentPriority,
    AppointmentStatus,
    CheckpointAction,
    DailyTravelSummary,
    GeoReading,
    JourneySummary,
    LeavingDecision,
    LegKind,
    LegStatus,
    LocationType,
    MileageEstimate,
    NextAppointmentSummary,
    ReimbursementSummary,
    TransitionResult,
    TravelLeg,
    TravelPhase,
    TravelState,
)
from .store import TravelStore

__all__ = [
    # Models
    "Appointment",
    "AppointmentPriority",
    "AppointmentStatus",
    "CheckpointAction",
    "DailyTravelSummary",
    "GeoReading",
    "JourneySummary",
    "LeavingDecision",
    "LegKind",
    "LegStatus",
    "LocationType",
    "MileageEstimate",
    "NextAppointmentSummary",
    "ReimbursementSummary",
    "TransitionResult",
    "TravelLeg",
    "TravelPhase",
    "TravelState",
    # Errors
    "TrackerError",
    "InvalidTransition",
    "LocationUnavailable",
    "ConflictError",
    "InvalidInput",
    "EstimatorUnavailable",
    # Persistence
    "TravelStore",
    "Database",
    "AppointmentRecord",
    "TravelLegRecord",
    "compute_travel_flags",
    "init_db",
]
