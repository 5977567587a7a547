"""
Database models and connection management for visittrack
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import Field, SQLModel, select, update

from .errors import ConflictError, InvalidInput
from .models import (
    Appointment,
    AppointmentPriority,
    AppointmentStatus,
    LegKind,
    LegStatus,
    LocationType,
    TravelLeg,
    TravelState,
    utcnow,
)
from .store import TravelStore


class AppointmentRecord(SQLModel, table=True):
    """
    Appointment table
    Scheduling owns most columns; the tracker maintains the travel flags
    """

    __tablename__ = "appointments"

    appointment_id: str = Field(primary_key=True, description="Appointment identifier")
    staff_user_id: str = Field(index=True, description="Assigned staff member")
    title: Optional[str] = Field(None, description="Appointment title")
    start_datetime: datetime = Field(index=True, description="Scheduled start (UTC)")
    end_datetime: Optional[datetime] = Field(None, description="Scheduled end (UTC)")
    status: AppointmentStatus = Field(
        default=AppointmentStatus.SCHEDULED, index=True, description="Appointment status"
    )
    priority: AppointmentPriority = Field(default=AppointmentPriority.NORMAL)

    location_address: Optional[str] = Field(None, description="Visit address")
    latitude: Optional[float] = Field(None, description="Visit latitude")
    longitude: Optional[float] = Field(None, description="Visit longitude")
    home_name: Optional[str] = Field(None, description="Foster home name")

    # Projection of the travel_legs rows
    has_in_progress_leg: bool = Field(default=False)
    has_completed_leg: bool = Field(default=False)
    has_in_progress_return_leg: bool = Field(default=False)
    return_leg_id: Optional[str] = Field(None)
    travel_version: int = Field(default=0, description="Optimistic concurrency counter")

    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentRecord":
        """Create database record from Appointment model"""
        return cls(**appointment.model_dump())

    def to_appointment(self) -> Appointment:
        """Convert database record to Appointment model"""
        return Appointment.model_validate(self, from_attributes=True)


class TravelLegRecord(SQLModel, table=True):
    """
    Travel leg table
    Authoritative record of every checkpoint pair
    """

    __tablename__ = "travel_legs"

    leg_id: str = Field(primary_key=True, description="Unique leg identifier")
    appointment_id: str = Field(
        foreign_key="appointments.appointment_id", index=True, description="Owning appointment"
    )
    staff_user_id: str = Field(index=True, description="Staff member who travelled")
    leg_kind: LegKind = Field(index=True)
    leg_status: LegStatus = Field(default=LegStatus.IN_PROGRESS, index=True)

    origin_appointment_id: Optional[str] = Field(None, index=True)
    idempotency_key: Optional[str] = Field(None, unique=True, index=True)
    journey_id: Optional[str] = Field(None, index=True)
    leg_sequence: Optional[int] = None

    start_latitude: float
    start_longitude: float
    start_timestamp: datetime = Field(index=True)
    start_location_name: Optional[str] = None
    start_location_type: Optional[LocationType] = None

    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    end_timestamp: Optional[datetime] = None
    end_location_name: Optional[str] = None
    end_location_type: Optional[LocationType] = None

    calculated_mileage: Optional[float] = Field(None, description="Miles")
    duration_minutes: Optional[int] = None
    estimated_toll_cost: Optional[float] = None
    actual_toll_cost: Optional[float] = None
    toll_confirmed: bool = Field(default=False)
    is_final_leg: bool = Field(default=False)

    is_manual_entry: bool = Field(default=False)
    is_backdated: bool = Field(default=False)
    manual_mileage: Optional[float] = None
    manual_notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_travel_leg(cls, leg: TravelLeg) -> "TravelLegRecord":
        """Create database record from TravelLeg model"""
        return cls(**leg.model_dump())

    def update_from(self, leg: TravelLeg) -> None:
        """Copy every field of a TravelLeg onto this record"""
        for field, value in leg.model_dump(exclude={"leg_id", "created_at"}).items():
            setattr(self, field, value)
        self.updated_at = utcnow()

    def to_travel_leg(self) -> TravelLeg:
        """Convert database record to TravelLeg model"""
        return TravelLeg.model_validate(self, from_attributes=True)


def compute_travel_flags(legs: Iterable[Any]) -> Dict[str, Any]:
    """
    Project live legs onto the appointment's denormalized flags

    Args:
        legs: Non-cancelled legs owned by one appointment

    Returns:
        Column values for the appointment row
    """
    flags = {
        "has_in_progress_leg": False,
        "has_completed_leg": False,
        "has_in_progress_return_leg": False,
        "return_leg_id": None,
    }
    for leg in legs:
        if leg.leg_status == LegStatus.CANCELLED:
            continue
        if leg.leg_status == LegStatus.IN_PROGRESS:
            flags["has_in_progress_leg"] = True
        if leg.leg_kind == LegKind.OUTBOUND and leg.leg_status == LegStatus.COMPLETED:
            flags["has_completed_leg"] = True
        if leg.leg_kind == LegKind.RETURN:
            flags["return_leg_id"] = leg.leg_id
            if leg.leg_status == LegStatus.IN_PROGRESS:
                flags["has_in_progress_return_leg"] = True
    return flags


class Database(TravelStore):
    """
    Database connection and travel persistence
    """

    def __init__(self, database_url: str = "sqlite:///visittrack.db"):
        self.database_url = database_url
        self.async_engine = create_async_engine(
            database_url.replace("sqlite:///", "sqlite+aiosqlite:///"), echo=False
        )
        self.async_session = sessionmaker(
            self.async_engine, class_=AsyncSession, expire_on_commit=False
        )
        self.logger = logging.getLogger(__name__)

    async def create_tables_async(self):
        """Create all database tables asynchronously"""
        async with self.async_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self.logger.info("Database tables created asynchronously")

    async def upsert_appointment(self, appointment: Appointment) -> Appointment:
        """
        Save or update an appointment's scheduling fields
        Travel flags and travel_version are left to save_leg on existing rows

        Args:
            appointment: Appointment to save

        Returns:
            The stored appointment
        """
        async with self.async_session() as session:
            existing = await session.get(AppointmentRecord, appointment.appointment_id)

            if existing:
                scheduling_fields = appointment.model_dump(
                    exclude={
                        "appointment_id",
                        "has_in_progress_leg",
                        "has_completed_leg",
                        "has_in_progress_return_leg",
                        "return_leg_id",
                        "travel_version",
                    }
                )
                for field, value in scheduling_fields.items():
                    setattr(existing, field, value)
                existing.updated_at = utcnow()
                record = existing
                self.logger.info(f"Updated appointment {appointment.appointment_id}")
            else:
                record = AppointmentRecord.from_appointment(appointment)
                session.add(record)
                self.logger.info(f"Created appointment {appointment.appointment_id}")

            await session.commit()
            return record.to_appointment()

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        """Get an appointment by id"""
        async with self.async_session() as session:
            record = await session.get(AppointmentRecord, appointment_id)
            return record.to_appointment() if record else None

    async def list_appointments(
        self, staff_user_id: Optional[str] = None, limit: int = 50
    ) -> List[Appointment]:
        """List appointments ordered by scheduled start"""
        async with self.async_session() as session:
            query = select(AppointmentRecord)
            if staff_user_id:
                query = query.where(AppointmentRecord.staff_user_id == staff_user_id)
            query = query.order_by(AppointmentRecord.start_datetime.asc()).limit(limit)

            result = await session.execute(query)
            return [record.to_appointment() for record in result.scalars().all()]

    async def load_appointment_travel_state(self, appointment_id: str) -> TravelState:
        async with self.async_session() as session:
            record = await session.get(AppointmentRecord, appointment_id)
            if record is None:
                raise InvalidInput(f"Appointment not found: {appointment_id}")

            owned = await session.execute(
                select(TravelLegRecord)
                .where(TravelLegRecord.appointment_id == appointment_id)
                .where(TravelLegRecord.leg_status != LegStatus.CANCELLED)
                .order_by(TravelLegRecord.created_at.asc())
            )
            departure = await session.execute(
                select(TravelLegRecord)
                .where(TravelLegRecord.origin_appointment_id == appointment_id)
                .where(TravelLegRecord.appointment_id != appointment_id)
                .where(TravelLegRecord.leg_kind == LegKind.OUTBOUND)
                .where(TravelLegRecord.leg_status != LegStatus.CANCELLED)
                .order_by(TravelLegRecord.created_at.desc())
            )

            outbound_leg = None
            return_leg = None
            for leg in owned.scalars().all():
                if leg.leg_kind == LegKind.OUTBOUND:
                    outbound_leg = leg.to_travel_leg()
                else:
                    return_leg = leg.to_travel_leg()

            departure_record = departure.scalars().first()

            return TravelState(
                appointment=record.to_appointment(),
                outbound_leg=outbound_leg,
                return_leg=return_leg,
                departure_leg=departure_record.to_travel_leg() if departure_record else None,
            )

    async def _bump_version(
        self, session: AsyncSession, appointment_id: str, expected_version: int, leg_id: str
    ):
        """Compare-and-bump one appointment's travel_version, rolling back on mismatch"""
        result = await session.execute(
            update(AppointmentRecord)
            .where(AppointmentRecord.appointment_id == appointment_id)
            .where(AppointmentRecord.travel_version == expected_version)
            .values(travel_version=expected_version + 1, updated_at=utcnow())
        )
        if result.rowcount == 1:
            return

        current = await session.get(AppointmentRecord, appointment_id)
        actual_version = current.travel_version if current else None
        await session.rollback()
        if current is None:
            raise InvalidInput(f"Appointment not found: {appointment_id}")
        self.logger.warning(
            f"Version conflict saving leg {leg_id} on appointment "
            f"{appointment_id}: expected {expected_version}, found {actual_version}"
        )
        raise ConflictError(appointment_id, expected_version, actual_version)

    async def save_leg(
        self,
        leg: TravelLeg,
        expected_version: int,
        guard: Optional[Tuple[str, int]] = None,
    ) -> TravelState:
        async with self.async_session() as session:
            # Versions are checked in the same transaction as the leg write
            await self._bump_version(session, leg.appointment_id, expected_version, leg.leg_id)
            if guard is not None:
                guard_id, guard_version = guard
                await self._bump_version(session, guard_id, guard_version, leg.leg_id)

            existing = await session.get(TravelLegRecord, leg.leg_id)
            if existing:
                existing.update_from(leg)
            else:
                session.add(TravelLegRecord.from_travel_leg(leg))
            await session.flush()

            await self._refresh_travel_flags(session, leg.appointment_id)
            await session.commit()
            self.logger.info(
                f"Saved {leg.leg_kind.value} leg {leg.leg_id} ({leg.leg_status.value}) "
                f"for appointment {leg.appointment_id}"
            )

        return await self.load_appointment_travel_state(leg.appointment_id)

    async def _refresh_travel_flags(self, session: AsyncSession, appointment_id: str):
        """Recompute the appointment's travel flags from its legs"""
        result = await session.execute(
            select(TravelLegRecord).where(TravelLegRecord.appointment_id == appointment_id)
        )
        flags = compute_travel_flags(result.scalars().all())

        record = await session.get(AppointmentRecord, appointment_id)
        for field, value in flags.items():
            setattr(record, field, value)

    async def find_next_appointment(
        self, staff_user_id: str, after_timestamp: datetime, within_minutes: int
    ) -> Optional[Appointment]:
        window_end = after_timestamp + timedelta(minutes=within_minutes)

        async with self.async_session() as session:
            result = await session.execute(
                select(AppointmentRecord)
                .where(AppointmentRecord.staff_user_id == staff_user_id)
                .where(AppointmentRecord.start_datetime > after_timestamp)
                .where(AppointmentRecord.start_datetime <= window_end)
                .where(AppointmentRecord.status != AppointmentStatus.CANCELLED)
                .order_by(AppointmentRecord.start_datetime.asc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return record.to_appointment() if record else None

    async def get_leg(self, leg_id: str) -> Optional[TravelLeg]:
        async with self.async_session() as session:
            record = await session.get(TravelLegRecord, leg_id)
            return record.to_travel_leg() if record else None

    async def find_leg_by_idempotency_key(self, key: str) -> Optional[TravelLeg]:
        async with self.async_session() as session:
            result = await session.execute(
                select(TravelLegRecord).where(TravelLegRecord.idempotency_key == key)
            )
            record = result.scalar_one_or_none()
            return record.to_travel_leg() if record else None

    async def list_staff_legs(
        self, staff_user_id: str, start: datetime, end: datetime
    ) -> List[TravelLeg]:
        async with self.async_session() as session:
            result = await session.execute(
                select(TravelLegRecord)
                .where(TravelLegRecord.staff_user_id == staff_user_id)
                .where(TravelLegRecord.start_timestamp >= start)
                .where(TravelLegRecord.start_timestamp < end)
                .where(TravelLegRecord.leg_status != LegStatus.CANCELLED)
                .order_by(TravelLegRecord.start_timestamp.asc())
            )
            return [record.to_travel_leg() for record in result.scalars().all()]

    async def list_journey_legs(self, journey_id: str) -> List[TravelLeg]:
        async with self.async_session() as session:
            result = await session.execute(
                select(TravelLegRecord)
                .where(TravelLegRecord.journey_id == journey_id)
                .where(TravelLegRecord.leg_status != LegStatus.CANCELLED)
                .order_by(TravelLegRecord.leg_sequence.asc(), TravelLegRecord.start_timestamp.asc())
            )
            return [record.to_travel_leg() for record in result.scalars().all()]

    async def close(self):
        """Close database connections"""
        await self.async_engine.dispose()


async def init_db(database_url: str = "sqlite:///visittrack.db") -> Database:
    """Create a database instance with its tables"""
    database = Database(database_url)
    await database.create_tables_async()
    return database
