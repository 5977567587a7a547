"""
Travel tracker service
Exposes the checkpoint operations on top of a TravelStore
"""

import asyncio
import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

from visittrack.config.models import TrackerSettings
from visittrack.config.rate import MileageRateCache
from visittrack.core.errors import EstimatorUnavailable, InvalidInput, InvalidTransition, LocationUnavailable
from visittrack.core.models import (
    AppointmentStatus,
    CheckpointAction,
    DailyTravelSummary,
    GeoReading,
    JourneySummary,
    LeavingDecision,
    LegKind,
    LegStatus,
    LocationType,
    ReimbursementSummary,
    TransitionResult,
    TravelLeg,
    TravelState,
    utcnow,
)
from visittrack.core.store import TravelStore
from visittrack.geo.estimator import DistanceEstimator
from visittrack.geo.provider import GeolocationProvider, capture_location
from visittrack.geo.routes_client import GoogleRoutesClient

from . import state_machine
from .calculator import (
    MileageCalculator,
    compute_reimbursement,
    duration_minutes,
    effective_toll_cost,
    summarize_legs,
)


class TravelTracker:
    """
    Owns the travel/visit lifecycle of appointments
    Every operation re-reads state from the store and writes at most one leg
    """

    def __init__(
        self,
        store: TravelStore,
        calculator: MileageCalculator,
        geolocation: Optional[GeolocationProvider] = None,
        rate: Optional[MileageRateCache] = None,
        settings: Optional[TrackerSettings] = None,
    ):
        self.store = store
        self.calculator = calculator
        self.geolocation = geolocation
        self.settings = settings or TrackerSettings()
        self.rate = rate or MileageRateCache.fixed(self.settings.mileage_rate)
        self.logger = logging.getLogger(__name__)
        self._locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(
        cls,
        settings: TrackerSettings,
        store: TravelStore,
        geolocation: Optional[GeolocationProvider] = None,
        estimator: Optional[DistanceEstimator] = None,
    ) -> "TravelTracker":
        """Wire a tracker from settings, using Google Routes when a key is configured"""
        if estimator is None and settings.google_maps_api_key:
            estimator = GoogleRoutesClient(
                api_key=settings.google_maps_api_key,
                timeout=settings.routes_timeout,
                toll_passes=settings.toll_passes,
            )

        return cls(
            store=store,
            calculator=MileageCalculator(estimator, settings.same_location_tolerance),
            geolocation=geolocation,
            rate=MileageRateCache.fixed(settings.mileage_rate),
            settings=settings,
        )

    def _lock(self, appointment_id: str) -> asyncio.Lock:
        """Per-appointment lock serializing transitions inside this process"""
        return self._locks.setdefault(appointment_id, asyncio.Lock())

    async def _reading(
        self, action: CheckpointAction, reading: Optional[GeoReading], warnings: List[str]
    ) -> GeoReading:
        if reading is None:
            if self.geolocation is None:
                raise LocationUnavailable("No geolocation provider configured")
            reading = await capture_location(
                self.geolocation, action, self.settings.geolocation_timeout
            )

        if reading.accuracy is not None and reading.accuracy > self.settings.low_accuracy_meters:
            self.logger.warning(f"Low accuracy reading for {action.value}: {reading.accuracy} m")
            warnings.append(
                f"Location accuracy is low ({reading.accuracy:.0f} m). "
                "Mileage for this leg may be off."
            )
        return reading

    @staticmethod
    def _journey_after(previous: Optional[TravelLeg]) -> Dict[str, object]:
        """Journey fields for a leg that follows `previous`, or opens a new journey"""
        if previous is None or previous.journey_id is None:
            return {"journey_id": str(uuid.uuid4()), "leg_sequence": 1}
        return {
            "journey_id": previous.journey_id,
            "leg_sequence": (previous.leg_sequence or 1) + 1,
        }

    def _new_leg(self, state: TravelState, leg_kind: LegKind, start: GeoReading, **fields) -> TravelLeg:
        return TravelLeg(
            leg_id=str(uuid.uuid4()),
            appointment_id=state.appointment_id,
            staff_user_id=state.appointment.staff_user_id,
            leg_kind=leg_kind,
            start_latitude=start.latitude,
            start_longitude=start.longitude,
            start_timestamp=start.timestamp,
            **fields,
        )

    async def _close_leg(
        self, leg: TravelLeg, end: GeoReading, warnings: List[str], **fields
    ) -> TravelLeg:
        """Fill a leg's end checkpoint and derived figures"""
        if end.timestamp < leg.start_timestamp:
            raise InvalidInput(
                f"Checkpoint at {end.timestamp.isoformat()} precedes the leg start "
                f"at {leg.start_timestamp.isoformat()}"
            )

        update = {
            "end_latitude": end.latitude,
            "end_longitude": end.longitude,
            "end_timestamp": end.timestamp,
            "duration_minutes": duration_minutes(leg.start_timestamp, end.timestamp),
            "leg_status": LegStatus.COMPLETED,
            "updated_at": utcnow(),
        }

        if fields.pop("skip_mileage", False):
            update["calculated_mileage"] = None
        else:
            try:
                estimate = await self.calculator.compute_mileage(leg.start_reading, end)
                update["calculated_mileage"] = estimate.mileage_miles
                update["estimated_toll_cost"] = estimate.estimated_toll_cost
            except EstimatorUnavailable as e:
                self.logger.warning(f"Mileage not calculated for leg {leg.leg_id}: {e}")
                warnings.append(f"Mileage could not be calculated: {e}")
                update["calculated_mileage"] = None

        update.update(fields)
        return leg.model_copy(update=update)

    async def get_state(self, appointment_id: str) -> TravelState:
        """Current travel state with derived phase"""
        return await self.store.load_appointment_travel_state(appointment_id)

    async def start_drive(
        self,
        appointment_id: str,
        reading: Optional[GeoReading] = None,
        start_location_name: Optional[str] = None,
        start_location_type: Optional[LocationType] = None,
    ) -> TransitionResult:
        """NOT_STARTED -> DRIVING_TO_VISIT"""
        warnings: List[str] = []

        async with self._lock(appointment_id):
            state = await self.store.load_appointment_travel_state(appointment_id)
            state_machine.check_start_drive(state)

            start = await self._reading(CheckpointAction.START_DRIVE, reading, warnings)
            leg = self._new_leg(
                state,
                LegKind.OUTBOUND,
                start,
                start_location_name=start_location_name,
                start_location_type=start_location_type,
                **self._journey_after(None),
            )
            new_state = await self.store.save_leg(leg, state.version)

        self.logger.info(f"Appointment {appointment_id}: drive started (leg {leg.leg_id})")
        return TransitionResult(
            appointment_id=appointment_id,
            action=CheckpointAction.START_DRIVE.value,
            state=new_state,
            leg=new_state.outbound_leg,
            warnings=warnings,
        )

    async def arrive(
        self, appointment_id: str, reading: Optional[GeoReading] = None
    ) -> TransitionResult:
        """DRIVING_TO_VISIT -> AT_VISIT, computing mileage"""
        warnings: List[str] = []

        async with self._lock(appointment_id):
            state = await self.store.load_appointment_travel_state(appointment_id)
            leg = state_machine.check_arrive(state)

            end = await self._reading(CheckpointAction.ARRIVED, reading, warnings)
            appointment = state.appointment
            closed = await self._close_leg(
                leg,
                end,
                warnings,
                end_location_name=appointment.home_name or appointment.location_address,
                end_location_type=LocationType.APPOINTMENT,
            )
            new_state = await self.store.save_leg(closed, state.version)

        self.logger.info(
            f"Appointment {appointment_id}: arrived, {closed.calculated_mileage} miles "
            f"in {closed.duration_minutes} min"
        )
        return TransitionResult(
            appointment_id=appointment_id,
            action=CheckpointAction.ARRIVED.value,
            state=new_state,
            leg=new_state.outbound_leg,
            warnings=warnings,
        )

    async def initiate_leaving(self, appointment_id: str) -> LeavingDecision:
        """
        Query whether a chained appointment follows this one
        Nothing is written; the decision is made by choose_next or choose_return
        """
        state = await self.store.load_appointment_travel_state(appointment_id)
        state_machine.check_at_visit(state, "leave")

        appointment = state.appointment
        next_appointment = await self.store.find_next_appointment(
            appointment.staff_user_id,
            appointment.start_datetime,
            self.settings.next_appointment_lookahead_minutes,
        )

        return LeavingDecision(
            appointment_id=appointment_id,
            has_next=next_appointment is not None,
            next_appointment=next_appointment.summary() if next_appointment else None,
        )

    async def choose_next(
        self,
        appointment_id: str,
        next_appointment_id: str,
        reading: Optional[GeoReading] = None,
    ) -> TransitionResult:
        """
        LEAVING_DECISION -> DRIVING_TO_NEXT

        Starts an outbound leg on the next appointment. The current appointment
        gets no leg, only a version bump checked in the same transaction, so a
        failed write leaves it at the visit and the call can simply be retried.
        A retry of a completed call returns the existing leg.
        """
        if next_appointment_id == appointment_id:
            raise InvalidInput("Next appointment must differ from the current appointment")

        idempotency_key = f"chain:{appointment_id}:{next_appointment_id}"
        warnings: List[str] = []

        # Both appointments are locked, always in id order
        first, second = sorted((appointment_id, next_appointment_id))
        async with self._lock(first), self._lock(second):
            existing = await self.store.find_leg_by_idempotency_key(idempotency_key)
            if existing is not None:
                self.logger.info(
                    f"Appointment {appointment_id}: travel to {next_appointment_id} "
                    f"already started (leg {existing.leg_id})"
                )
                return TransitionResult(
                    appointment_id=next_appointment_id,
                    action="choose_next",
                    state=await self.store.load_appointment_travel_state(next_appointment_id),
                    leg=existing,
                )

            state = await self.store.load_appointment_travel_state(appointment_id)
            state_machine.check_at_visit(state, "drive to next appointment")

            next_state = await self.store.load_appointment_travel_state(next_appointment_id)
            current = state.appointment
            upcoming = next_state.appointment
            if upcoming.staff_user_id != current.staff_user_id:
                raise InvalidInput(
                    f"Appointment {next_appointment_id} is not assigned to {current.staff_user_id}"
                )
            if upcoming.status == AppointmentStatus.CANCELLED:
                raise InvalidTransition(f"Appointment {next_appointment_id} is cancelled")
            state_machine.check_start_drive(next_state)

            start = await self._reading(CheckpointAction.LEAVING, reading, warnings)
            leg = self._new_leg(
                next_state,
                LegKind.OUTBOUND,
                start,
                origin_appointment_id=appointment_id,
                idempotency_key=idempotency_key,
                start_location_name=current.home_name or current.location_address,
                start_location_type=LocationType.APPOINTMENT,
                **self._journey_after(state.outbound_leg),
            )
            saved_state = await self.store.save_leg(
                leg, next_state.version, guard=(appointment_id, state.version)
            )

        self.logger.info(
            f"Appointment {appointment_id}: leaving for {next_appointment_id} (leg {leg.leg_id})"
        )
        return TransitionResult(
            appointment_id=next_appointment_id,
            action="choose_next",
            state=saved_state,
            leg=saved_state.outbound_leg,
            warnings=warnings,
        )

    async def choose_return(
        self, appointment_id: str, reading: Optional[GeoReading] = None
    ) -> TransitionResult:
        """LEAVING_DECISION -> RETURNING_TO_BASE"""
        warnings: List[str] = []

        async with self._lock(appointment_id):
            state = await self.store.load_appointment_travel_state(appointment_id)
            state_machine.check_at_visit(state, "start return travel")

            start = await self._reading(CheckpointAction.RETURN, reading, warnings)
            appointment = state.appointment
            leg = self._new_leg(
                state,
                LegKind.RETURN,
                start,
                is_final_leg=True,
                start_location_name=appointment.home_name or appointment.location_address,
                start_location_type=LocationType.APPOINTMENT,
                **self._journey_after(state.outbound_leg),
            )
            new_state = await self.store.save_leg(leg, state.version)

        self.logger.info(f"Appointment {appointment_id}: return travel started (leg {leg.leg_id})")
        return TransitionResult(
            appointment_id=appointment_id,
            action=CheckpointAction.RETURN.value,
            state=new_state,
            leg=new_state.return_leg,
            warnings=warnings,
        )

    async def complete_return(
        self,
        leg_id: str,
        reading: Optional[GeoReading] = None,
        end_location_name: Optional[str] = None,
        end_location_type: LocationType = LocationType.OFFICE,
    ) -> TransitionResult:
        """RETURNING_TO_BASE -> COMPLETE"""
        leg = await self.store.get_leg(leg_id)
        if leg is None:
            raise InvalidInput(f"Travel leg not found: {leg_id}")

        warnings: List[str] = []
        appointment_id = leg.appointment_id

        async with self._lock(appointment_id):
            state = await self.store.load_appointment_travel_state(appointment_id)
            current = state_machine.check_complete_return(state, leg)

            end = await self._reading(CheckpointAction.RETURN_COMPLETE, reading, warnings)
            closed = await self._close_leg(
                current,
                end,
                warnings,
                is_final_leg=True,
                end_location_name=end_location_name,
                end_location_type=end_location_type,
            )
            new_state = await self.store.save_leg(closed, state.version)

        self.logger.info(
            f"Appointment {appointment_id}: return completed, {closed.calculated_mileage} miles"
        )
        return TransitionResult(
            appointment_id=appointment_id,
            action=CheckpointAction.RETURN_COMPLETE.value,
            state=new_state,
            leg=new_state.return_leg,
            warnings=warnings,
        )

    async def confirm_toll(self, leg_id: str, actual_amount: float) -> TravelLeg:
        """Record the toll actually paid on a leg"""
        if actual_amount is None or actual_amount < 0:
            raise InvalidInput(f"Toll amount must be zero or more, got {actual_amount}")

        leg = await self.store.get_leg(leg_id)
        if leg is None:
            raise InvalidInput(f"Travel leg not found: {leg_id}")

        async with self._lock(leg.appointment_id):
            state = await self.store.load_appointment_travel_state(leg.appointment_id)
            leg = await self.store.get_leg(leg_id)
            if leg.leg_status == LegStatus.CANCELLED:
                raise InvalidTransition(f"Cannot confirm toll on cancelled leg {leg_id}")

            updated = leg.model_copy(
                update={
                    "actual_toll_cost": round(actual_amount, 2),
                    "toll_confirmed": True,
                    "updated_at": utcnow(),
                }
            )
            await self.store.save_leg(updated, state.version)

        self.logger.info(f"Leg {leg_id}: toll confirmed at {actual_amount:.2f}")
        return await self.store.get_leg(leg_id)

    async def cancel_leg(self, leg_id: str) -> TransitionResult:
        """Cancel an in-progress leg, returning the appointment to the prior phase"""
        leg = await self.store.get_leg(leg_id)
        if leg is None:
            raise InvalidInput(f"Travel leg not found: {leg_id}")

        async with self._lock(leg.appointment_id):
            state = await self.store.load_appointment_travel_state(leg.appointment_id)
            leg = await self.store.get_leg(leg_id)
            state_machine.check_cancel(state, leg)

            cancelled = leg.model_copy(
                update={
                    "leg_status": LegStatus.CANCELLED,
                    "idempotency_key": None,
                    "updated_at": utcnow(),
                }
            )
            new_state = await self.store.save_leg(cancelled, state.version)

        self.logger.info(f"Appointment {leg.appointment_id}: leg {leg_id} cancelled")
        return TransitionResult(
            appointment_id=leg.appointment_id,
            action="cancel",
            state=new_state,
            leg=cancelled,
        )

    async def record_manual_leg(
        self,
        appointment_id: str,
        leg_kind: LegKind,
        start: GeoReading,
        end: GeoReading,
        manual_notes: str,
        manual_mileage: Optional[float] = None,
        is_backdated: bool = True,
        start_location_name: Optional[str] = None,
        end_location_name: Optional[str] = None,
        end_location_type: Optional[LocationType] = None,
    ) -> TransitionResult:
        """
        Back-fill a completed leg for forgotten travel or corrections

        Args:
            appointment_id: Appointment the leg belongs to
            leg_kind: Outbound or return
            start: Start checkpoint
            end: End checkpoint
            manual_notes: Explanation of the manual entry (required)
            manual_mileage: Operator-entered miles; calculated when omitted
            is_backdated: Whether the travel happened earlier than recorded
        """
        if not manual_notes or not manual_notes.strip():
            raise InvalidInput("Manual entries require notes explaining the entry")
        if manual_mileage is not None and manual_mileage < 0:
            raise InvalidInput(f"Manual mileage must be zero or more, got {manual_mileage}")
        if end.timestamp < start.timestamp:
            raise InvalidInput("Manual leg ends before it starts")

        warnings: List[str] = []

        async with self._lock(appointment_id):
            state = await self.store.load_appointment_travel_state(appointment_id)
            state_machine.check_manual_slot(state, leg_kind)

            previous = state.outbound_leg if leg_kind == LegKind.RETURN else None
            leg = self._new_leg(
                state,
                leg_kind,
                start,
                is_manual_entry=True,
                is_backdated=is_backdated,
                manual_mileage=manual_mileage,
                manual_notes=manual_notes.strip(),
                is_final_leg=leg_kind == LegKind.RETURN,
                start_location_name=start_location_name,
                **self._journey_after(previous),
            )
            closed = await self._close_leg(
                leg,
                end,
                warnings,
                skip_mileage=manual_mileage is not None,
                end_location_name=end_location_name,
                end_location_type=end_location_type,
            )
            new_state = await self.store.save_leg(closed, state.version)

        self.logger.info(
            f"Appointment {appointment_id}: manual {leg_kind.value} leg recorded ({closed.leg_id})"
        )
        return TransitionResult(
            appointment_id=appointment_id,
            action="manual_entry",
            state=new_state,
            leg=closed,
            warnings=warnings,
        )

    async def reimbursement_for(self, appointment_id: str) -> ReimbursementSummary:
        """Reimbursement figures for an appointment's completed legs"""
        state = await self.store.load_appointment_travel_state(appointment_id)

        outbound = state.outbound_leg if state.outbound_leg and state.outbound_leg.is_completed else None
        inbound = state.return_leg if state.return_leg and state.return_leg.is_completed else None

        outbound_miles = outbound.effective_mileage if outbound else 0.0
        return_miles = inbound.effective_mileage if inbound else 0.0
        toll_cost = round(effective_toll_cost(outbound) + effective_toll_cost(inbound), 2)
        rate = await self.rate.get_rate()

        return ReimbursementSummary(
            appointment_id=appointment_id,
            outbound_miles=outbound_miles,
            return_miles=return_miles,
            toll_cost=toll_cost,
            rate_per_mile=rate,
            total=compute_reimbursement(outbound_miles, return_miles, toll_cost, rate),
        )

    async def daily_summary(self, staff_user_id: str, day: date) -> DailyTravelSummary:
        """Totals over a staff member's completed legs that started on a day"""
        start = datetime.combine(day, time.min)
        legs = await self.store.list_staff_legs(staff_user_id, start, start + timedelta(days=1))
        return summarize_legs(staff_user_id, day, legs)

    async def journey_summary(self, journey_id: str) -> JourneySummary:
        """
        The legs of a multi-stop trip in travel order

        A journey opens with start_drive (or a manual outbound leg) and is
        carried through every choose_next to the final return leg.
        """
        legs = await self.store.list_journey_legs(journey_id)
        if not legs:
            raise InvalidInput(f"Journey not found: {journey_id}")

        first = legs[0]
        totals = summarize_legs(first.staff_user_id, first.start_timestamp.date(), legs)
        return JourneySummary(
            journey_id=journey_id,
            staff_user_id=first.staff_user_id,
            legs=legs,
            total_mileage=totals.total_mileage,
            total_tolls=totals.total_tolls,
            total_duration=totals.total_duration,
        )
