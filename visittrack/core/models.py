"""
Core data models for visit travel tracking
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC, leaving naive values untouched"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status (owned by scheduling)"""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class AppointmentPriority(str, Enum):
    """Appointment priority"""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class LegKind(str, Enum):
    """Direction of a travel leg"""

    OUTBOUND = "outbound"
    RETURN = "return"


class LegStatus(str, Enum):
    """Travel leg status"""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class LocationType(str, Enum):
    """Kind of place a leg starts or ends at"""

    OFFICE = "office"
    APPOINTMENT = "appointment"
    HOME = "home"
    OTHER = "other"


class CheckpointAction(str, Enum):
    """Action tag passed to the geolocation provider"""

    START_DRIVE = "start_drive"
    ARRIVED = "arrived"
    LEAVING = "leaving"
    RETURN = "return"
    RETURN_COMPLETE = "return_complete"


class TravelPhase(str, Enum):
    """Phase of one appointment's travel/visit cycle"""

    NOT_STARTED = "not_started"
    DRIVING_TO_VISIT = "driving_to_visit"
    AT_VISIT = "at_visit"
    LEAVING_DECISION = "leaving_decision"
    DRIVING_TO_NEXT = "driving_to_next"
    RETURNING_TO_BASE = "returning_to_base"
    COMPLETE = "complete"


class GeoReading(BaseModel):
    """A single geolocation-stamped checkpoint reading"""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude in degrees")
    timestamp: datetime = Field(
        default_factory=utcnow, description="When the reading was taken (UTC)"
    )
    accuracy: Optional[float] = Field(None, ge=0, description="Accuracy radius in meters")

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v):
        """Store readings as naive UTC"""
        return to_naive_utc(v)

    def same_point(self, other: "GeoReading") -> bool:
        """True when both readings carry identical coordinates"""
        return self.latitude == other.latitude and self.longitude == other.longitude


class NextAppointmentSummary(BaseModel):
    """Short description of a chained appointment"""

    appointment_id: str
    title: Optional[str] = None
    start_datetime: datetime
    location_address: Optional[str] = None
    home_name: Optional[str] = None


class Appointment(BaseModel):
    """
    Scheduled visit as seen by the tracker
    The travel flags are a projection of the appointment's legs
    """

    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    appointment_id: str = Field(..., description="Appointment identifier")
    staff_user_id: str = Field(..., description="Assigned staff member")
    title: Optional[str] = Field(None, description="Appointment title")
    start_datetime: datetime = Field(..., description="Scheduled start (UTC)")
    end_datetime: Optional[datetime] = Field(None, description="Scheduled end (UTC)")
    status: AppointmentStatus = Field(AppointmentStatus.SCHEDULED)
    priority: AppointmentPriority = Field(AppointmentPriority.NORMAL)

    # Target location
    location_address: Optional[str] = Field(None, description="Visit address")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    home_name: Optional[str] = Field(None, description="Foster home name")

    # Denormalized travel flags
    has_in_progress_leg: bool = False
    has_completed_leg: bool = False
    has_in_progress_return_leg: bool = False
    return_leg_id: Optional[str] = None
    travel_version: int = Field(0, ge=0, description="Optimistic concurrency counter")

    @field_validator("start_datetime", "end_datetime")
    @classmethod
    def normalize_datetimes(cls, v):
        return to_naive_utc(v) if v is not None else v

    def summary(self) -> NextAppointmentSummary:
        return NextAppointmentSummary(
            appointment_id=self.appointment_id,
            title=self.title,
            start_datetime=self.start_datetime,
            location_address=self.location_address,
            home_name=self.home_name,
        )


class TravelLeg(BaseModel):
    """One directed travel segment with start/end checkpoints"""

    leg_id: str = Field(..., description="Unique leg identifier")
    appointment_id: str = Field(..., description="Owning appointment")
    staff_user_id: str = Field(..., description="Staff member who travelled")
    leg_kind: LegKind
    leg_status: LegStatus = LegStatus.IN_PROGRESS

    # Chaining
    origin_appointment_id: Optional[str] = Field(
        None, description="Appointment a chained outbound leg departed from"
    )
    idempotency_key: Optional[str] = None
    journey_id: Optional[str] = Field(
        None, description="Groups the legs of one multi-stop trip"
    )
    leg_sequence: Optional[int] = Field(None, ge=1, description="Position within the journey")

    # Start checkpoint
    start_latitude: float
    start_longitude: float
    start_timestamp: datetime
    start_location_name: Optional[str] = None
    start_location_type: Optional[LocationType] = None

    # End checkpoint
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    end_timestamp: Optional[datetime] = None
    end_location_name: Optional[str] = None
    end_location_type: Optional[LocationType] = None

    # Derived figures
    calculated_mileage: Optional[float] = Field(None, ge=0, description="Miles")
    duration_minutes: Optional[int] = None
    estimated_toll_cost: Optional[float] = Field(None, ge=0)
    actual_toll_cost: Optional[float] = Field(None, ge=0)
    toll_confirmed: bool = False
    is_final_leg: bool = False

    # Manual entry
    is_manual_entry: bool = False
    is_backdated: bool = False
    manual_mileage: Optional[float] = Field(None, ge=0)
    manual_notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("start_timestamp", "end_timestamp", "created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v):
        return to_naive_utc(v) if v is not None else v

    @property
    def is_in_progress(self) -> bool:
        return self.leg_status == LegStatus.IN_PROGRESS

    @property
    def is_completed(self) -> bool:
        return self.leg_status == LegStatus.COMPLETED

    @property
    def start_reading(self) -> GeoReading:
        return GeoReading(
            latitude=self.start_latitude,
            longitude=self.start_longitude,
            timestamp=self.start_timestamp,
        )

    @property
    def effective_mileage(self) -> float:
        """Operator override first, then the calculated figure"""
        if self.manual_mileage is not None:
            return self.manual_mileage
        return self.calculated_mileage or 0.0


class TravelState(BaseModel):
    """Everything the state machine needs to know about one appointment"""

    appointment: Appointment
    outbound_leg: Optional[TravelLeg] = Field(None, description="Leg into the visit")
    return_leg: Optional[TravelLeg] = Field(None, description="Final leg back to base")
    departure_leg: Optional[TravelLeg] = Field(
        None, description="Chained outbound leg on the next appointment"
    )

    @property
    def appointment_id(self) -> str:
        return self.appointment.appointment_id

    @property
    def version(self) -> int:
        return self.appointment.travel_version

    @property
    def legs(self) -> List[TravelLeg]:
        """Legs owned by this appointment"""
        return [leg for leg in (self.outbound_leg, self.return_leg) if leg is not None]

    @property
    def phase(self) -> TravelPhase:
        from visittrack.tracker.state_machine import derive_phase

        return derive_phase(self)


class MileageEstimate(BaseModel):
    """Distance and toll figures for one leg"""

    mileage_miles: float = Field(..., ge=0)
    estimated_toll_cost: Optional[float] = Field(None, ge=0)
    duration_seconds: Optional[int] = None


class LeavingDecision(BaseModel):
    """Context returned when the operator signals they are leaving a visit"""

    appointment_id: str
    phase: TravelPhase = TravelPhase.LEAVING_DECISION
    has_next: bool
    next_appointment: Optional[NextAppointmentSummary] = None


class TransitionResult(BaseModel):
    """Outcome of a checkpoint transition"""

    appointment_id: str
    action: str
    state: TravelState
    leg: Optional[TravelLeg] = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def mileage(self) -> Optional[float]:
        if self.leg is None:
            return None
        if self.leg.manual_mileage is not None:
            return self.leg.manual_mileage
        return self.leg.calculated_mileage


class ReimbursementSummary(BaseModel):
    """Derived, non-authoritative reimbursement figures for one appointment"""

    appointment_id: str
    outbound_miles: float
    return_miles: float
    toll_cost: float
    rate_per_mile: float
    total: float


class JourneySummary(BaseModel):
    """The legs of one multi-stop trip in travel order"""

    journey_id: str
    staff_user_id: str
    legs: List[TravelLeg] = Field(default_factory=list)
    total_mileage: float = 0.0
    total_tolls: float = 0.0
    total_duration: int = 0

    @property
    def appointment_ids(self) -> List[str]:
        return [leg.appointment_id for leg in self.legs]

    @property
    def is_complete(self) -> bool:
        """True once the final leg back to base has been completed"""
        return bool(self.legs) and self.legs[-1].is_final_leg and self.legs[-1].is_completed


class DailyTravelSummary(BaseModel):
    """Totals over one staff member's completed legs for a day"""

    staff_user_id: str
    day: date
    total_legs: int = 0
    total_mileage: float = 0.0
    total_tolls: float = 0.0
    total_duration: int = 0
