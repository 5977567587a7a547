"""
Persistence adapter interface for travel state
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from .models import Appointment, TravelLeg, TravelState


class TravelStore(ABC):
    """
    Single source of truth for appointment travel state
    The tracker is stateless between calls and re-reads through this adapter
    """

    @abstractmethod
    async def load_appointment_travel_state(self, appointment_id: str) -> TravelState:
        """
        Load an appointment together with its live (non-cancelled) legs

        Args:
            appointment_id: Appointment to load

        Returns:
            TravelState carrying the appointment's current travel_version

        Raises:
            InvalidInput: If the appointment does not exist
        """
        pass

    @abstractmethod
    async def save_leg(
        self,
        leg: TravelLeg,
        expected_version: int,
        guard: Optional[Tuple[str, int]] = None,
    ) -> TravelState:
        """
        Insert or update a leg and refresh the owning appointment's travel flags

        Args:
            leg: Leg to persist
            expected_version: travel_version observed when the state was read
            guard: Optional (appointment_id, travel_version) of a second
                appointment whose version is checked and bumped in the same
                transaction, such as the appointment a chained leg departs from

        Returns:
            Reloaded TravelState of the leg's appointment

        Raises:
            ConflictError: If either appointment's travel_version moved on
        """
        pass

    @abstractmethod
    async def find_next_appointment(
        self, staff_user_id: str, after_timestamp: datetime, within_minutes: int
    ) -> Optional[Appointment]:
        """Next non-cancelled appointment for a staff member inside the lookahead window"""
        pass

    @abstractmethod
    async def get_leg(self, leg_id: str) -> Optional[TravelLeg]:
        pass

    @abstractmethod
    async def find_leg_by_idempotency_key(self, key: str) -> Optional[TravelLeg]:
        pass

    @abstractmethod
    async def list_staff_legs(
        self, staff_user_id: str, start: datetime, end: datetime
    ) -> List[TravelLeg]:
        """Non-cancelled legs whose start falls in [start, end)"""
        pass

    @abstractmethod
    async def list_journey_legs(self, journey_id: str) -> List[TravelLeg]:
        """Non-cancelled legs of one journey ordered by leg_sequence"""
        pass
