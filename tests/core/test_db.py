"""
Tests for database models and operations
"""

from datetime import datetime, timedelta, timezone

import pytest

from visittrack.core.db import (
    AppointmentRecord,
    Database,
    TravelLegRecord,
    compute_travel_flags,
)
from visittrack.core.errors import ConflictError, InvalidInput
from visittrack.core.models import (
    Appointment,
    AppointmentStatus,
    LegKind,
    LegStatus,
    TravelLeg,
    TravelPhase,
)


@pytest.fixture
async def db(tmp_path):
    """Create async test database instance"""
    database = Database(f"sqlite:///{tmp_path / 'visittrack_test.db'}")
    await database.create_tables_async()
    yield database
    await database.close()


@pytest.fixture
def sample_appointment():
    """Create sample Appointment for testing"""
    return Appointment(
        appointment_id="appt-1",
        staff_user_id="staff-1",
        title="Home visit",
        start_datetime=datetime(2024, 3, 1, 9, 0),
        home_name="Garcia Home",
    )


def make_leg(leg_id="leg-1", appointment_id="appt-1", kind=LegKind.OUTBOUND, **fields):
    values = dict(
        leg_id=leg_id,
        appointment_id=appointment_id,
        staff_user_id="staff-1",
        leg_kind=kind,
        start_latitude=29.7604,
        start_longitude=-95.3698,
        start_timestamp=datetime(2024, 3, 1, 8, 30),
    )
    values.update(fields)
    return TravelLeg(**values)


class TestRecords:
    """Test record conversion"""

    def test_appointment_round_trip(self, sample_appointment):
        """Test converting Appointment to record and back"""
        record = AppointmentRecord.from_appointment(sample_appointment)

        assert record.appointment_id == "appt-1"
        assert record.travel_version == 0
        assert record.to_appointment() == sample_appointment

    def test_leg_round_trip(self):
        """Test converting TravelLeg to record and back"""
        leg = make_leg(calculated_mileage=12.34, estimated_toll_cost=1.5)
        record = TravelLegRecord.from_travel_leg(leg)

        assert record.leg_kind == LegKind.OUTBOUND
        assert record.to_travel_leg() == leg

    def test_update_from_keeps_identity(self):
        """Test update_from copies fields but not the key"""
        record = TravelLegRecord.from_travel_leg(make_leg())
        created = record.created_at

        record.update_from(make_leg(leg_status=LegStatus.COMPLETED, calculated_mileage=3.0))

        assert record.leg_id == "leg-1"
        assert record.created_at == created
        assert record.leg_status == LegStatus.COMPLETED
        assert record.calculated_mileage == 3.0


class TestComputeTravelFlags:
    """Test projection of legs onto appointment flags"""

    def test_no_legs(self):
        """Test flags with no legs"""
        assert compute_travel_flags([]) == {
            "has_in_progress_leg": False,
            "has_completed_leg": False,
            "has_in_progress_return_leg": False,
            "return_leg_id": None,
        }

    def test_in_progress_outbound(self):
        """Test an outbound leg in progress"""
        flags = compute_travel_flags([make_leg()])

        assert flags["has_in_progress_leg"] is True
        assert flags["has_completed_leg"] is False

    def test_completed_outbound_and_return(self):
        """Test a finished outbound leg with return under way"""
        flags = compute_travel_flags([
            make_leg(leg_status=LegStatus.COMPLETED),
            make_leg("leg-2", kind=LegKind.RETURN),
        ])

        assert flags["has_completed_leg"] is True
        assert flags["has_in_progress_leg"] is True
        assert flags["has_in_progress_return_leg"] is True
        assert flags["return_leg_id"] == "leg-2"

    def test_cancelled_legs_ignored(self):
        """Test cancelled legs do not set flags"""
        flags = compute_travel_flags([make_leg(leg_status=LegStatus.CANCELLED)])

        assert flags["has_in_progress_leg"] is False
        assert flags["has_completed_leg"] is False


class TestDatabase:
    """Test Database persistence"""

    async def test_upsert_and_get_appointment(self, db, sample_appointment):
        """Test saving and reading an appointment"""
        saved = await db.upsert_appointment(sample_appointment)
        loaded = await db.get_appointment("appt-1")

        assert saved.appointment_id == "appt-1"
        assert loaded.home_name == "Garcia Home"
        assert loaded.start_datetime == datetime(2024, 3, 1, 9, 0)

    async def test_upsert_keeps_travel_version(self, db, sample_appointment):
        """Test rescheduling does not reset travel bookkeeping"""
        await db.upsert_appointment(sample_appointment)
        await db.save_leg(make_leg(), expected_version=0)

        rescheduled = sample_appointment.model_copy(
            update={"start_datetime": datetime(2024, 3, 1, 10, 0)}
        )
        saved = await db.upsert_appointment(rescheduled)

        assert saved.start_datetime == datetime(2024, 3, 1, 10, 0)
        assert saved.travel_version == 1
        assert saved.has_in_progress_leg is True

    async def test_list_appointments(self, db, sample_appointment):
        """Test listing appointments by staff"""
        await db.upsert_appointment(sample_appointment)
        await db.upsert_appointment(
            sample_appointment.model_copy(
                update={"appointment_id": "appt-2", "staff_user_id": "staff-2"}
            )
        )

        assert len(await db.list_appointments()) == 2
        staff_appointments = await db.list_appointments(staff_user_id="staff-2")
        assert [a.appointment_id for a in staff_appointments] == ["appt-2"]

    async def test_load_unknown_appointment(self, db):
        """Test loading state for a missing appointment"""
        with pytest.raises(InvalidInput, match="Appointment not found"):
            await db.load_appointment_travel_state("missing")

    async def test_load_empty_state(self, db, sample_appointment):
        """Test state of an appointment without legs"""
        await db.upsert_appointment(sample_appointment)
        state = await db.load_appointment_travel_state("appt-1")

        assert state.outbound_leg is None
        assert state.return_leg is None
        assert state.departure_leg is None
        assert state.phase == TravelPhase.NOT_STARTED

    async def test_save_leg_round_trip(self, db, sample_appointment):
        """Test saved legs reload with coordinates, timestamps and mileage"""
        await db.upsert_appointment(sample_appointment)
        leg = make_leg(
            leg_status=LegStatus.COMPLETED,
            end_latitude=29.8,
            end_longitude=-95.4,
            end_timestamp=datetime(2024, 3, 1, 8, 55),
            calculated_mileage=7.25,
            duration_minutes=25,
        )

        state = await db.save_leg(leg, expected_version=0)
        loaded = state.outbound_leg

        assert loaded.start_latitude == 29.7604
        assert loaded.start_longitude == -95.3698
        assert loaded.start_timestamp == datetime(2024, 3, 1, 8, 30)
        assert loaded.end_timestamp == datetime(2024, 3, 1, 8, 55)
        assert loaded.calculated_mileage == 7.25
        assert loaded.duration_minutes == 25
        assert await db.get_leg("leg-1") == loaded

    async def test_save_leg_bumps_version_and_flags(self, db, sample_appointment):
        """Test each save bumps the version and recomputes flags"""
        await db.upsert_appointment(sample_appointment)

        state = await db.save_leg(make_leg(), expected_version=0)
        assert state.version == 1
        assert state.appointment.has_in_progress_leg is True
        assert state.appointment.has_completed_leg is False

        completed = state.outbound_leg.model_copy(update={"leg_status": LegStatus.COMPLETED})
        state = await db.save_leg(completed, expected_version=1)
        assert state.version == 2
        assert state.appointment.has_in_progress_leg is False
        assert state.appointment.has_completed_leg is True

    async def test_save_leg_stale_version(self, db, sample_appointment):
        """Test a stale version is rejected and nothing is written"""
        await db.upsert_appointment(sample_appointment)
        await db.save_leg(make_leg(), expected_version=0)

        with pytest.raises(ConflictError) as exc_info:
            await db.save_leg(make_leg("leg-2", kind=LegKind.RETURN), expected_version=0)

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1
        assert await db.get_leg("leg-2") is None

        state = await db.load_appointment_travel_state("appt-1")
        assert state.version == 1
        assert state.return_leg is None

    async def test_save_leg_unknown_appointment(self, db):
        """Test saving a leg for a missing appointment"""
        with pytest.raises(InvalidInput):
            await db.save_leg(make_leg(appointment_id="missing"), expected_version=0)

    async def test_departure_leg_loaded(self, db, sample_appointment):
        """Test a chained leg shows up as the origin's departure leg"""
        await db.upsert_appointment(sample_appointment)
        await db.upsert_appointment(
            sample_appointment.model_copy(
                update={"appointment_id": "appt-2", "start_datetime": datetime(2024, 3, 1, 11, 0)}
            )
        )
        await db.save_leg(make_leg(leg_status=LegStatus.COMPLETED), expected_version=0)
        await db.save_leg(
            make_leg("leg-2", appointment_id="appt-2", origin_appointment_id="appt-1"),
            expected_version=0,
        )

        origin = await db.load_appointment_travel_state("appt-1")
        assert origin.departure_leg.leg_id == "leg-2"
        assert origin.phase == TravelPhase.DRIVING_TO_NEXT

        upcoming = await db.load_appointment_travel_state("appt-2")
        assert upcoming.outbound_leg.leg_id == "leg-2"
        assert upcoming.departure_leg is None

    async def test_find_next_appointment(self, db, sample_appointment):
        """Test next appointment lookup within the window"""
        base = sample_appointment.start_datetime
        await db.upsert_appointment(sample_appointment)
        for appointment_id, offset, staff, status in [
            ("later", 300, "staff-1", AppointmentStatus.SCHEDULED),
            ("cancelled", 60, "staff-1", AppointmentStatus.CANCELLED),
            ("other-staff", 30, "staff-2", AppointmentStatus.SCHEDULED),
            ("too-late", 800, "staff-1", AppointmentStatus.SCHEDULED),
            ("next", 120, "staff-1", AppointmentStatus.SCHEDULED),
        ]:
            await db.upsert_appointment(
                sample_appointment.model_copy(
                    update={
                        "appointment_id": appointment_id,
                        "staff_user_id": staff,
                        "status": status,
                        "start_datetime": base + timedelta(minutes=offset),
                    }
                )
            )

        found = await db.find_next_appointment("staff-1", base, 720)
        assert found.appointment_id == "next"

        assert await db.find_next_appointment("staff-1", base, 60) is None
        assert await db.find_next_appointment("staff-1", base + timedelta(minutes=800), 720) is None

    async def test_find_leg_by_idempotency_key(self, db, sample_appointment):
        """Test idempotency key lookup"""
        await db.upsert_appointment(sample_appointment)
        await db.save_leg(make_leg(idempotency_key="chain:a:b"), expected_version=0)

        found = await db.find_leg_by_idempotency_key("chain:a:b")
        assert found.leg_id == "leg-1"
        assert await db.find_leg_by_idempotency_key("chain:x:y") is None

    async def test_list_staff_legs(self, db, sample_appointment):
        """Test listing a staff member's legs in a time range"""
        await db.upsert_appointment(sample_appointment)
        state = await db.save_leg(make_leg(leg_status=LegStatus.COMPLETED), expected_version=0)
        await db.save_leg(
            make_leg("leg-2", kind=LegKind.RETURN, start_timestamp=datetime(2024, 3, 2, 8, 0)),
            expected_version=state.version,
        )

        legs = await db.list_staff_legs("staff-1", datetime(2024, 3, 1), datetime(2024, 3, 2))
        assert [leg.leg_id for leg in legs] == ["leg-1"]

        assert await db.list_staff_legs("staff-2", datetime(2024, 3, 1), datetime(2024, 3, 3)) == []

    async def test_timestamps_round_trip_as_naive_utc(self, db):
        """Test aware timestamps are stored and reloaded as naive UTC"""
        central = timezone(timedelta(hours=-6))
        await db.upsert_appointment(Appointment(
            appointment_id="appt-1",
            staff_user_id="staff-1",
            start_datetime=datetime(2024, 3, 1, 3, 0, tzinfo=central),
        ))
        await db.save_leg(
            make_leg(start_timestamp=datetime(2024, 3, 1, 2, 30, tzinfo=central)),
            expected_version=0,
        )

        state = await db.load_appointment_travel_state("appt-1")

        assert state.appointment.start_datetime == datetime(2024, 3, 1, 9, 0)
        assert state.appointment.start_datetime.tzinfo is None
        assert state.outbound_leg.start_timestamp == datetime(2024, 3, 1, 8, 30)
        assert state.outbound_leg.start_timestamp.tzinfo is None
        assert state.outbound_leg.created_at.tzinfo is None

        legs = await db.list_staff_legs("staff-1", datetime(2024, 3, 1, 8, 30), datetime(2024, 3, 1, 9, 0))
        assert [leg.leg_id for leg in legs] == ["leg-1"]

    async def test_save_leg_guard_bumps_both_versions(self, db, sample_appointment):
        """Test a guarded save bumps the guard appointment's version too"""
        await db.upsert_appointment(sample_appointment)
        await db.upsert_appointment(sample_appointment.model_copy(update={"appointment_id": "appt-2"}))
        state = await db.save_leg(make_leg(leg_status=LegStatus.COMPLETED), expected_version=0)

        chained = await db.save_leg(
            make_leg("leg-2", appointment_id="appt-2", origin_appointment_id="appt-1"),
            expected_version=0,
            guard=("appt-1", state.version),
        )

        assert chained.version == 1
        origin = await db.load_appointment_travel_state("appt-1")
        assert origin.version == 2
        assert origin.phase == TravelPhase.DRIVING_TO_NEXT

    async def test_save_leg_stale_guard(self, db, sample_appointment):
        """Test a stale guard version rejects the write on both appointments"""
        await db.upsert_appointment(sample_appointment)
        await db.upsert_appointment(sample_appointment.model_copy(update={"appointment_id": "appt-2"}))
        await db.save_leg(make_leg(leg_status=LegStatus.COMPLETED), expected_version=0)

        with pytest.raises(ConflictError) as exc_info:
            await db.save_leg(
                make_leg("leg-2", appointment_id="appt-2", origin_appointment_id="appt-1"),
                expected_version=0,
                guard=("appt-1", 0),
            )

        assert exc_info.value.appointment_id == "appt-1"
        assert exc_info.value.actual_version == 1
        assert await db.get_leg("leg-2") is None

        upcoming = await db.load_appointment_travel_state("appt-2")
        assert upcoming.version == 0
        assert upcoming.appointment.has_in_progress_leg is False

    async def test_list_journey_legs(self, db, sample_appointment):
        """Test a journey's live legs come back in sequence order"""
        await db.upsert_appointment(sample_appointment)
        state = await db.save_leg(
            make_leg(journey_id="journey-1", leg_sequence=1, leg_status=LegStatus.COMPLETED),
            expected_version=0,
        )
        state = await db.save_leg(
            make_leg(
                "leg-2", kind=LegKind.RETURN, journey_id="journey-1", leg_sequence=2,
                leg_status=LegStatus.CANCELLED,
            ),
            expected_version=state.version,
        )
        await db.save_leg(
            make_leg("leg-3", kind=LegKind.RETURN, journey_id="journey-1", leg_sequence=2),
            expected_version=state.version,
        )

        legs = await db.list_journey_legs("journey-1")

        assert [leg.leg_id for leg in legs] == ["leg-1", "leg-3"]
        assert [leg.leg_sequence for leg in legs] == [1, 2]
        assert await db.list_journey_legs("journey-2") == []
