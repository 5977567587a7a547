"""
Travel leg state machine

The phase is never stored. It is derived from the persisted legs each time,
so an interrupted session resumes from whatever was last written.
"""

from typing import Optional

from visittrack.core.errors import InvalidTransition
from visittrack.core.models import LegKind, TravelLeg, TravelPhase, TravelState

# What the operator should be told when a checkpoint arrives in the wrong phase
PHASE_HINTS = {
    TravelPhase.NOT_STARTED: "The drive has not been started yet.",
    TravelPhase.DRIVING_TO_VISIT: "The drive is already in progress. Mark arrival first.",
    TravelPhase.AT_VISIT: "You are at the visit. Choose whether you are leaving.",
    TravelPhase.DRIVING_TO_NEXT: "Travel to the next appointment is already in progress.",
    TravelPhase.RETURNING_TO_BASE: "Return travel is already in progress. Mark arrival at base.",
    TravelPhase.COMPLETE: "Travel for this appointment is already complete.",
}


def derive_phase(state: TravelState) -> TravelPhase:
    """
    Derive the phase from the legs present on a TravelState

    A finished return leg or chained departure leg ends the cycle; otherwise
    the outbound leg decides between not started, driving and at the visit.
    """
    if state.return_leg is not None:
        if state.return_leg.is_in_progress:
            return TravelPhase.RETURNING_TO_BASE
        return TravelPhase.COMPLETE

    if state.departure_leg is not None:
        if state.departure_leg.is_in_progress:
            return TravelPhase.DRIVING_TO_NEXT
        return TravelPhase.COMPLETE

    outbound = state.outbound_leg
    if outbound is None:
        return TravelPhase.NOT_STARTED
    if outbound.is_in_progress:
        return TravelPhase.DRIVING_TO_VISIT
    return TravelPhase.AT_VISIT


def in_progress_legs(state: TravelState):
    return [leg for leg in state.legs if leg.is_in_progress]


def _reject(state: TravelState, action: str, reason: Optional[str] = None) -> InvalidTransition:
    phase = derive_phase(state)
    message = reason or PHASE_HINTS.get(phase, f"Not allowed while {phase.value}.")
    return InvalidTransition(
        f"Cannot {action} for appointment {state.appointment_id}: {message}"
    )


def check_start_drive(state: TravelState) -> None:
    """NOT_STARTED -> DRIVING_TO_VISIT"""
    if state.outbound_leg is not None:
        if state.outbound_leg.is_in_progress:
            raise _reject(state, "start drive", "Drive already started.")
        raise _reject(state, "start drive", "Drive already completed.")
    if state.return_leg is not None or state.departure_leg is not None:
        raise _reject(state, "start drive", "Travel already continued past this visit.")
    if in_progress_legs(state):
        raise _reject(state, "start drive", "Another leg is still in progress.")


def check_arrive(state: TravelState) -> TravelLeg:
    """DRIVING_TO_VISIT -> AT_VISIT, returns the leg to close"""
    outbound = state.outbound_leg
    if outbound is None:
        raise _reject(
            state, "mark arrival", "Start drive location not captured. Start the drive first."
        )
    if not outbound.is_in_progress:
        raise _reject(state, "mark arrival", "Arrival already recorded.")
    return outbound


def check_at_visit(state: TravelState, action: str) -> None:
    """Leaving, choose-next and choose-return all require a completed arrival"""
    if derive_phase(state) != TravelPhase.AT_VISIT:
        raise _reject(state, action)


def check_complete_return(state: TravelState, leg: TravelLeg) -> TravelLeg:
    """RETURNING_TO_BASE -> COMPLETE"""
    if leg.leg_kind != LegKind.RETURN:
        raise _reject(state, "complete return", f"Leg {leg.leg_id} is not a return leg.")
    current = state.return_leg
    if current is None or current.leg_id != leg.leg_id:
        raise _reject(state, "complete return", f"Leg {leg.leg_id} is not the active return leg.")
    if not current.is_in_progress:
        raise _reject(state, "complete return", "Return travel already completed.")
    return current


def check_cancel(state: TravelState, leg: TravelLeg) -> None:
    """Only an in-progress leg may be cancelled"""
    if not leg.is_in_progress:
        raise _reject(
            state, "cancel leg", f"Leg {leg.leg_id} is {leg.leg_status.value}, not in progress."
        )


def check_manual_slot(state: TravelState, leg_kind: LegKind) -> None:
    """A back-filled leg may only occupy an empty slot"""
    if in_progress_legs(state):
        raise _reject(state, "record manual leg", "Another leg is still in progress.")
    if leg_kind == LegKind.OUTBOUND and state.outbound_leg is not None:
        raise _reject(state, "record manual leg", "An outbound leg already exists.")
    if leg_kind == LegKind.RETURN:
        if state.outbound_leg is None or not state.outbound_leg.is_completed:
            raise _reject(
                state, "record manual leg", "Record the outbound leg before the return leg."
            )
        if state.return_leg is not None:
            raise _reject(state, "record manual leg", "A return leg already exists.")
        if state.departure_leg is not None:
            raise _reject(
                state, "record manual leg", "Travel already continued to the next appointment."
            )
