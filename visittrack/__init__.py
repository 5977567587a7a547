"""
VisitTrack: Travel & Visit Leg Tracker

Records geolocation-stamped checkpoints for staff driving to foster-care
appointments, derives mileage and tolls per leg, and reports reimbursement.
"""

__version__ = "0.1.0"
__author__ = "VisitTrack Team"

from .core.db import Database
from .core.models import Appointment, TravelLeg, TravelPhase, TravelState
from .tracker.service import TravelTracker

__all__ = [
    "Appointment",
    "Database",
    "TravelLeg",
    "TravelPhase",
    "TravelState",
    "TravelTracker",
]
