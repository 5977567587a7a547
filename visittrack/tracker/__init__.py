"""
Travel tracking state machine and service
"""

from .calculator import MileageCalculator, compute_reimbursement, summarize_legs
from .service import TravelTracker
from .state_machine import PHASE_HINTS, derive_phase

__all__ = [
    "MileageCalculator",
    "PHASE_HINTS",
    "TravelTracker",
    "compute_reimbursement",
    "derive_phase",
    "summarize_legs",
]
