"""
Tests for the VisitTrack CLI
"""

import re
from datetime import datetime
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from visittrack.cli.app import app

runner = CliRunner()

LEG_ID = re.compile(r"Leg: ([0-9a-f-]{36})")
JOURNEY_ID = re.compile(r"Journey: ([0-9a-f-]{36})")


@pytest.fixture
def invoke(tmp_path):
    """Invoke the CLI against a temporary database without routing credentials"""
    database_url = f"sqlite:///{tmp_path / 'cli.db'}"

    def _invoke(*args):
        result = runner.invoke(
            app,
            ["--db", database_url, *args],
            env={"GOOGLE_MAPS_API_KEY": "", "VISITTRACK_DATABASE_URL": ""},
        )
        # Undo rich line wrapping
        result.text = " ".join(result.output.split())
        return result

    return _invoke


@pytest.fixture
def appointments(invoke):
    """Two appointments for one staff member"""
    for appointment_id, start, home in [
        ("appt-a", "2024-03-01T09:00:00", "Garcia Home"),
        ("appt-b", "2024-03-01T13:00:00", "Nguyen Home"),
    ]:
        result = invoke(
            "add-appointment", appointment_id,
            "--staff", "staff-1", "--start", start, "--home", home,
        )
        assert result.exit_code == 0, result.output
    return invoke


class TestCli:
    """Test CLI commands"""

    def test_init(self, invoke, tmp_path):
        """Test database initialization"""
        result = invoke("init")

        assert result.exit_code == 0
        assert "Database initialized" in result.text
        assert (tmp_path / "cli.db").exists()

    def test_add_appointment(self, appointments):
        """Test appointments show up in status"""
        result = appointments("status", "appt-a")

        assert result.exit_code == 0
        assert "Garcia Home" in result.text
        assert "not_started" in result.text
        assert "No travel recorded yet" in result.text

    def test_status_unknown_appointment(self, invoke):
        """Test status of a missing appointment"""
        result = invoke("status", "missing")

        assert result.exit_code == 1
        assert "Appointment not found" in result.text

    def test_start_drive_without_location(self, appointments):
        """Test a checkpoint without coordinates fails cleanly"""
        result = appointments("start-drive", "appt-a")

        assert result.exit_code == 1
        assert "Start drive failed" in result.text

    def test_visit_cycle(self, appointments):
        """Test a drive, arrival and return through the CLI"""
        result = appointments("start-drive", "appt-a", "--lat", "29.7604", "--lng", "-95.3698")
        assert result.exit_code == 0, result.output
        assert "Drive started" in result.text
        assert "driving_to_visit" in result.text

        result = appointments("start-drive", "appt-a", "--lat", "29.7604", "--lng", "-95.3698")
        assert result.exit_code == 1
        assert "Drive already started" in result.text

        result = appointments("arrive", "appt-a", "--lat", "29.9902", "--lng", "-95.3368")
        assert result.exit_code == 0, result.output
        assert "Arrival recorded" in result.text
        assert "at_visit" in result.text
        assert "Mileage could not be calculated" in result.text

        result = appointments("leaving", "appt-a")
        assert result.exit_code == 0, result.output
        assert "Next appointment found" in result.text
        assert "appt-b" in result.text

        result = appointments("return", "appt-a", "--lat", "29.9902", "--lng", "-95.3368")
        assert result.exit_code == 0, result.output
        assert "returning_to_base" in result.text
        leg_id = LEG_ID.search(result.text).group(1)

        result = appointments("complete-return", leg_id, "--lat", "29.7604", "--lng", "-95.3698")
        assert result.exit_code == 0, result.output
        assert "Return completed" in result.text
        assert "complete" in result.text

        result = appointments("reimbursement", "appt-a")
        assert result.exit_code == 0, result.output
        assert "Total" in result.text

        result = appointments("daily", "staff-1")
        assert result.exit_code == 0, result.output
        assert "Legs:" in result.text

    def test_drive_to_next(self, appointments):
        """Test chaining to the next appointment"""
        appointments("start-drive", "appt-a", "--lat", "29.7604", "--lng", "-95.3698")
        appointments("arrive", "appt-a", "--lat", "29.9902", "--lng", "-95.3368")

        result = appointments("next", "appt-a", "appt-b", "--lat", "29.9902", "--lng", "-95.3368")
        assert result.exit_code == 0, result.output
        assert "Driving to appt-b" in result.text

        result = appointments("status", "appt-a")
        assert "driving_to_next" in result.text

    def test_cancel_leg(self, appointments):
        """Test cancelling a drive"""
        result = appointments("start-drive", "appt-a", "--lat", "29.7604", "--lng", "-95.3698")
        leg_id = LEG_ID.search(result.text).group(1)

        result = appointments("cancel-leg", leg_id)
        assert result.exit_code == 0, result.output
        assert "Leg cancelled" in result.text
        assert "not_started" in result.text

    def test_confirm_toll(self, appointments):
        """Test confirming a toll on a finished leg"""
        appointments("start-drive", "appt-a", "--lat", "29.7604", "--lng", "-95.3698")
        result = appointments("arrive", "appt-a", "--lat", "29.9902", "--lng", "-95.3368")
        leg_id = LEG_ID.search(result.text).group(1)

        result = appointments("confirm-toll", leg_id, "2.50")
        assert result.exit_code == 0, result.output
        assert "Toll confirmed" in result.text
        assert "$2.50" in result.text

    def test_confirm_toll_unknown_leg(self, invoke):
        """Test confirming a toll on a missing leg"""
        result = invoke("confirm-toll", "missing", "1.00")

        assert result.exit_code == 1
        assert "Travel leg not found" in result.text

    def test_manual_leg(self, appointments):
        """Test back-filling a leg"""
        result = appointments(
            "manual-leg", "appt-a",
            "--kind", "outbound",
            "--start-lat", "29.7604", "--start-lng", "-95.3698",
            "--started", "2024-03-01T08:00:00",
            "--end-lat", "29.9902", "--end-lng", "-95.3368",
            "--ended", "2024-03-01T08:25:00",
            "--notes", "Forgot to start the drive",
            "--miles", "16.2",
        )

        assert result.exit_code == 0, result.output
        assert "Manual leg recorded" in result.text
        assert "16.20 mi" in result.text
        assert "at_visit" in result.text

    def test_daily_defaults_to_utc_day(self, appointments):
        """Test the default day is the current UTC date"""
        appointments(
            "manual-leg", "appt-a",
            "--kind", "outbound",
            "--start-lat", "29.7604", "--start-lng", "-95.3698",
            "--started", "2024-03-01T08:00:00",
            "--end-lat", "29.9902", "--end-lng", "-95.3368",
            "--ended", "2024-03-01T08:25:00",
            "--notes", "Forgot to start the drive",
            "--miles", "16.2",
        )

        with patch("visittrack.cli.app.utcnow", return_value=datetime(2024, 3, 1, 23, 30)):
            result = appointments("daily", "staff-1")

        assert result.exit_code == 0, result.output
        assert "2024-03-01" in result.text
        assert "Legs: 1" in result.text

    def test_journey(self, appointments):
        """Test a finished trip is reported as one journey"""
        result = appointments("start-drive", "appt-a", "--lat", "29.7604", "--lng", "-95.3698")
        journey_id = JOURNEY_ID.search(result.text).group(1)
        appointments("arrive", "appt-a", "--lat", "29.9902", "--lng", "-95.3368")
        result = appointments("return", "appt-a", "--lat", "29.9902", "--lng", "-95.3368")
        leg_id = LEG_ID.search(result.text).group(1)
        appointments("complete-return", leg_id, "--lat", "29.7604", "--lng", "-95.3698")

        result = appointments("journey", journey_id)

        assert result.exit_code == 0, result.output
        assert "Stops: appt-a" in result.text
        assert "Status: complete" in result.text

    def test_journey_unknown(self, invoke):
        """Test reporting a journey that does not exist"""
        result = invoke("journey", "missing")

        assert result.exit_code == 1
        assert "Journey not found" in result.text
