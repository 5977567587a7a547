"""
Error taxonomy for the travel leg tracker
"""

from typing import Optional


class TrackerError(Exception):
    """Base exception for tracker errors"""
    pass


class InvalidTransition(TrackerError):
    """Requested checkpoint does not follow from the persisted travel state"""
    pass


class LocationUnavailable(TrackerError):
    """Geolocation provider denied the request or timed out"""
    pass


class ConflictError(TrackerError):
    """Another writer changed the appointment's travel state since it was read"""

    def __init__(
        self, appointment_id: str, expected_version: int, actual_version: Optional[int] = None
    ):
        self.appointment_id = appointment_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Travel state for appointment {appointment_id} changed "
            f"(expected version {expected_version}, found {actual_version}). "
            "Reload and retry."
        )


class InvalidInput(TrackerError):
    """Malformed caller input, rejected before any persistence attempt"""
    pass


class EstimatorUnavailable(TrackerError):
    """Distance & toll estimator failed to produce a route"""
    pass
