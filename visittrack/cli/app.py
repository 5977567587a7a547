"""
Main CLI application for VisitTrack
Provides commands for recording travel checkpoints, reviewing legs and reimbursement
"""

import asyncio
import logging
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from visittrack.config.models import TrackerSettings
from visittrack.config.parser import SettingsError, load_settings
from visittrack.core.db import init_db
from visittrack.core.errors import TrackerError
from visittrack.core.models import (
    Appointment,
    AppointmentPriority,
    GeoReading,
    LegKind,
    LocationType,
    TransitionResult,
    TravelLeg,
    utcnow,
)
from visittrack.geo.provider import StaticGeolocationProvider
from visittrack.tracker.service import TravelTracker

# Initialize Typer app
app = typer.Typer(
    name="visittrack",
    help="VisitTrack - Travel and visit leg tracking with mileage reimbursement",
    add_completion=False,
)

# Console for rich output
console = Console()

# Options shared by every command, set in the callback
_options = {"config": None, "database": None}


def _settings() -> TrackerSettings:
    settings = load_settings(_options["config"])
    if _options["database"]:
        settings = settings.model_copy(update={"database_url": _options["database"]})
    return settings


async def _tracker(
    settings: TrackerSettings, lat: Optional[float] = None, lng: Optional[float] = None
):
    """Database plus a tracker whose geolocation provider returns the given coordinates"""
    db = await init_db(settings.database_url)
    tracker = TravelTracker.from_settings(
        settings, db, geolocation=StaticGeolocationProvider(lat, lng)
    )
    return db, tracker


def _run(label: str, coro) -> None:
    """Run a command coroutine, reporting failures the same way everywhere"""
    try:
        asyncio.run(coro)
    except (TrackerError, SettingsError) as e:
        console.print(f"[red]{label} failed: {e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Error during {label.lower()}: {e}[/red]")
        raise typer.Exit(1)


def _format_miles(miles: Optional[float]) -> str:
    return f"{miles:.2f} mi" if miles is not None else "-"


def _format_money(amount: Optional[float]) -> str:
    return f"${amount:.2f}" if amount is not None else "-"


def _leg_table(title: str, legs) -> Table:
    table = Table(title=title)
    table.add_column("Leg", style="cyan", width=10)
    table.add_column("Kind", width=9)
    table.add_column("Status", width=12)
    table.add_column("Started", width=17)
    table.add_column("Ended", width=17)
    table.add_column("Miles", justify="right", width=10)
    table.add_column("Toll", justify="right", width=8)
    table.add_column("Manual", justify="center", width=6)

    for leg in legs:
        toll = leg.actual_toll_cost if leg.toll_confirmed else leg.estimated_toll_cost
        table.add_row(
            leg.leg_id[:8],
            leg.leg_kind.value,
            leg.leg_status.value,
            leg.start_timestamp.strftime("%Y-%m-%d %H:%M"),
            leg.end_timestamp.strftime("%Y-%m-%d %H:%M") if leg.end_timestamp else "-",
            _format_miles(leg.effective_mileage if leg.is_completed else None),
            _format_money(toll),
            "✓" if leg.is_manual_entry else "",
        )
    return table


def _print_result(result: TransitionResult, message: str) -> None:
    console.print(f"[green]✓ {message}[/green]")
    if result.leg is not None:
        console.print(f"Leg: {result.leg.leg_id}")
        if result.leg.journey_id:
            console.print(f"Journey: {result.leg.journey_id} (leg {result.leg.leg_sequence})")
        if result.leg.is_completed:
            console.print(f"Mileage: {_format_miles(result.mileage)}")
            if result.leg.duration_minutes is not None:
                console.print(f"Duration: {result.leg.duration_minutes} min")
            if result.leg.estimated_toll_cost:
                console.print(
                    f"Estimated toll: {_format_money(result.leg.estimated_toll_cost)} "
                    "(confirm with confirm-toll)"
                )
    console.print(f"Phase: [bold]{result.state.phase.value}[/bold]")
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")


def _print_leg(leg: TravelLeg) -> None:
    console.print(
        f"Leg {leg.leg_id}: toll {_format_money(leg.actual_toll_cost)} "
        f"(confirmed: {'yes' if leg.toll_confirmed else 'no'})"
    )


@app.command()
def init():
    """Initialize the database"""
    async def initialize():
        settings = _settings()
        console.print("[cyan]Initializing VisitTrack database...[/cyan]")
        db = await init_db(settings.database_url)
        await db.close()
        console.print("[green]✓ Database initialized successfully![/green]")

    _run("Initialization", initialize())


@app.command("add-appointment")
def add_appointment(
    appointment_id: str = typer.Argument(..., help="Appointment identifier"),
    staff: str = typer.Option(..., "--staff", help="Assigned staff member"),
    start: datetime = typer.Option(..., "--start", help="Scheduled start (UTC)"),
    end: Optional[datetime] = typer.Option(None, "--end", help="Scheduled end (UTC)"),
    title: Optional[str] = typer.Option(None, "--title", help="Appointment title"),
    address: Optional[str] = typer.Option(None, "--address", help="Visit address"),
    home: Optional[str] = typer.Option(None, "--home", help="Foster home name"),
    priority: AppointmentPriority = typer.Option(AppointmentPriority.NORMAL, "--priority"),
):
    """Create or update an appointment"""
    async def save():
        settings = _settings()
        db = await init_db(settings.database_url)
        try:
            appointment = await db.upsert_appointment(
                Appointment(
                    appointment_id=appointment_id,
                    staff_user_id=staff,
                    start_datetime=start,
                    end_datetime=end,
                    title=title,
                    location_address=address,
                    home_name=home,
                    priority=priority,
                )
            )
            console.print(
                f"[green]✓ Saved appointment {appointment.appointment_id} "
                f"for {appointment.staff_user_id} at {appointment.start_datetime}[/green]"
            )
        finally:
            await db.close()

    _run("Saving appointment", save())


@app.command()
def status(appointment_id: str = typer.Argument(..., help="Appointment identifier")):
    """Show the travel phase and legs of an appointment"""
    async def show_status():
        db, tracker = await _tracker(_settings())
        try:
            state = await tracker.get_state(appointment_id)
        finally:
            await db.close()

        appointment = state.appointment
        console.print(f"\n[bold cyan]{appointment.title or appointment.appointment_id}[/bold cyan]")
        console.print(f"Staff: {appointment.staff_user_id}")
        console.print(f"Scheduled: {appointment.start_datetime}")
        if appointment.home_name or appointment.location_address:
            console.print(f"Location: {appointment.home_name or appointment.location_address}")
        console.print(f"Phase: [bold]{state.phase.value}[/bold]")

        legs = list(state.legs)
        if state.departure_leg is not None:
            legs.append(state.departure_leg)
        if legs:
            console.print(_leg_table("\nTravel Legs", legs))
        else:
            console.print("[yellow]No travel recorded yet[/yellow]")

    _run("Status", show_status())


@app.command("start-drive")
def start_drive(
    appointment_id: str = typer.Argument(..., help="Appointment identifier"),
    lat: Optional[float] = typer.Option(None, "--lat", help="Current latitude"),
    lng: Optional[float] = typer.Option(None, "--lng", help="Current longitude"),
    location_name: Optional[str] = typer.Option(None, "--from", help="Start location name"),
    location_type: Optional[LocationType] = typer.Option(None, "--from-type"),
):
    """Start driving to an appointment"""
    async def run():
        db, tracker = await _tracker(_settings(), lat, lng)
        try:
            result = await tracker.start_drive(
                appointment_id,
                start_location_name=location_name,
                start_location_type=location_type,
            )
        finally:
            await db.close()
        _print_result(result, "Drive started")

    _run("Start drive", run())


@app.command()
def arrive(
    appointment_id: str = typer.Argument(..., help="Appointment identifier"),
    lat: Optional[float] = typer.Option(None, "--lat", help="Current latitude"),
    lng: Optional[float] = typer.Option(None, "--lng", help="Current longitude"),
):
    """Mark arrival at an appointment"""
    async def run():
        db, tracker = await _tracker(_settings(), lat, lng)
        try:
            result = await tracker.arrive(appointment_id)
        finally:
            await db.close()
        _print_result(result, "Arrival recorded")

    _run("Arrival", run())


@app.command()
def leaving(appointment_id: str = typer.Argument(..., help="Appointment identifier")):
    """Signal leaving a visit and look up the next appointment"""
    async def run():
        db, tracker = await _tracker(_settings())
        try:
            decision = await tracker.initiate_leaving(appointment_id)
        finally:
            await db.close()

        if decision.has_next:
            upcoming = decision.next_appointment
            console.print("[cyan]Next appointment found:[/cyan]")
            console.print(f"  {upcoming.title or upcoming.appointment_id} at {upcoming.start_datetime}")
            if upcoming.home_name or upcoming.location_address:
                console.print(f"  {upcoming.home_name or upcoming.location_address}")
            console.print(
                f"\nRun: visittrack next {appointment_id} {upcoming.appointment_id} --lat .. --lng .."
            )
            console.print(f" or: visittrack return {appointment_id} --lat .. --lng ..")
        else:
            console.print("[yellow]No further appointments scheduled[/yellow]")
            console.print(f"Run: visittrack return {appointment_id} --lat .. --lng ..")

    _run("Leaving", run())


@app.command("next")
def drive_to_next(
    appointment_id: str = typer.Argument(..., help="Appointment being left"),
    next_appointment_id: str = typer.Argument(..., help="Appointment to drive to"),
    lat: Optional[float] = typer.Option(None, "--lat", help="Current latitude"),
    lng: Optional[float] = typer.Option(None, "--lng", help="Current longitude"),
):
    """Leave a visit and drive straight to the next appointment"""
    async def run():
        db, tracker = await _tracker(_settings(), lat, lng)
        try:
            result = await tracker.choose_next(appointment_id, next_appointment_id)
        finally:
            await db.close()
        _print_result(result, f"Driving to {next_appointment_id}")

    _run("Drive to next appointment", run())


@app.command("return")
def return_to_base(
    appointment_id: str = typer.Argument(..., help="Appointment being left"),
    lat: Optional[float] = typer.Option(None, "--lat", help="Current latitude"),
    lng: Optional[float] = typer.Option(None, "--lng", help="Current longitude"),
):
    """Leave a visit and start return travel"""
    async def run():
        db, tracker = await _tracker(_settings(), lat, lng)
        try:
            result = await tracker.choose_return(appointment_id)
        finally:
            await db.close()
        _print_result(result, "Return travel started")

    _run("Return", run())


@app.command("complete-return")
def complete_return(
    leg_id: str = typer.Argument(..., help="Return leg identifier"),
    lat: Optional[float] = typer.Option(None, "--lat", help="Current latitude"),
    lng: Optional[float] = typer.Option(None, "--lng", help="Current longitude"),
    location_name: Optional[str] = typer.Option(None, "--to", help="Arrival location name"),
    location_type: LocationType = typer.Option(LocationType.OFFICE, "--to-type"),
):
    """Mark arrival back at base"""
    async def run():
        db, tracker = await _tracker(_settings(), lat, lng)
        try:
            result = await tracker.complete_return(
                leg_id, end_location_name=location_name, end_location_type=location_type
            )
        finally:
            await db.close()
        _print_result(result, "Return completed")

    _run("Complete return", run())


@app.command("confirm-toll")
def confirm_toll(
    leg_id: str = typer.Argument(..., help="Travel leg identifier"),
    amount: float = typer.Argument(..., help="Toll actually paid"),
):
    """Confirm the toll actually paid on a leg"""
    async def run():
        db, tracker = await _tracker(_settings())
        try:
            leg = await tracker.confirm_toll(leg_id, amount)
        finally:
            await db.close()
        console.print("[green]✓ Toll confirmed[/green]")
        _print_leg(leg)

    _run("Toll confirmation", run())


@app.command("cancel-leg")
def cancel_leg(leg_id: str = typer.Argument(..., help="Travel leg identifier")):
    """Cancel an in-progress leg"""
    async def run():
        db, tracker = await _tracker(_settings())
        try:
            result = await tracker.cancel_leg(leg_id)
        finally:
            await db.close()
        _print_result(result, "Leg cancelled")

    _run("Cancel leg", run())


@app.command("manual-leg")
def manual_leg(
    appointment_id: str = typer.Argument(..., help="Appointment identifier"),
    kind: LegKind = typer.Option(..., "--kind", help="outbound or return"),
    start_lat: float = typer.Option(..., "--start-lat"),
    start_lng: float = typer.Option(..., "--start-lng"),
    started: datetime = typer.Option(..., "--started", help="When travel started (UTC)"),
    end_lat: float = typer.Option(..., "--end-lat"),
    end_lng: float = typer.Option(..., "--end-lng"),
    ended: datetime = typer.Option(..., "--ended", help="When travel ended (UTC)"),
    notes: str = typer.Option(..., "--notes", help="Why the leg is entered manually"),
    miles: Optional[float] = typer.Option(None, "--miles", help="Mileage override"),
):
    """
    Back-fill a completed leg

    Examples:
        visittrack manual-leg A1 --kind outbound --start-lat 29.76 --start-lng -95.36 \\
            --started 2024-03-01T08:00:00 --end-lat 29.80 --end-lng -95.40 \\
            --ended 2024-03-01T08:25:00 --notes "Forgot to start the drive"
    """
    async def run():
        db, tracker = await _tracker(_settings())
        try:
            result = await tracker.record_manual_leg(
                appointment_id,
                kind,
                GeoReading(latitude=start_lat, longitude=start_lng, timestamp=started),
                GeoReading(latitude=end_lat, longitude=end_lng, timestamp=ended),
                manual_notes=notes,
                manual_mileage=miles,
            )
        finally:
            await db.close()
        _print_result(result, "Manual leg recorded")

    _run("Manual entry", run())


@app.command()
def reimbursement(appointment_id: str = typer.Argument(..., help="Appointment identifier")):
    """Show reimbursement figures for an appointment"""
    async def run():
        db, tracker = await _tracker(_settings())
        try:
            summary = await tracker.reimbursement_for(appointment_id)
        finally:
            await db.close()

        table = Table(title=f"\nReimbursement for {appointment_id}")
        table.add_column("Item", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Outbound", _format_miles(summary.outbound_miles))
        table.add_row("Return", _format_miles(summary.return_miles))
        table.add_row("Rate", f"${summary.rate_per_mile:.2f}/mi")
        table.add_row("Tolls", _format_money(summary.toll_cost))
        table.add_row("[bold]Total[/bold]", f"[bold]{_format_money(summary.total)}[/bold]")
        console.print(table)

    _run("Reimbursement", run())


@app.command()
def daily(
    staff: str = typer.Argument(..., help="Staff member"),
    day: Optional[datetime] = typer.Option(None, "--day", formats=["%Y-%m-%d"], help="Day (default today)"),
):
    """Show a staff member's travel totals for a day"""
    async def run():
        target = day.date() if day else utcnow().date()
        start = datetime.combine(target, time.min)
        db, tracker = await _tracker(_settings())
        try:
            summary = await tracker.daily_summary(staff, target)
            legs = await db.list_staff_legs(
                staff, start, start + timedelta(days=1)
            )
        finally:
            await db.close()

        if legs:
            console.print(_leg_table(f"\nLegs for {staff} on {target}", legs))
        console.print(f"\n[bold]Legs:[/bold] {summary.total_legs}")
        console.print(f"[bold]Mileage:[/bold] {_format_miles(summary.total_mileage)}")
        console.print(f"[bold]Tolls:[/bold] {_format_money(summary.total_tolls)}")
        console.print(f"[bold]Driving time:[/bold] {summary.total_duration} min")

    _run("Daily summary", run())


@app.command()
def journey(journey_id: str = typer.Argument(..., help="Journey identifier")):
    """Show the legs of a multi-stop trip in travel order"""
    async def run():
        db, tracker = await _tracker(_settings())
        try:
            summary = await tracker.journey_summary(journey_id)
        finally:
            await db.close()

        console.print(_leg_table(f"\nJourney {journey_id}", summary.legs))
        console.print(f"\n[bold]Stops:[/bold] {', '.join(dict.fromkeys(summary.appointment_ids))}")
        console.print(f"[bold]Mileage:[/bold] {_format_miles(summary.total_mileage)}")
        console.print(f"[bold]Tolls:[/bold] {_format_money(summary.total_tolls)}")
        console.print(f"[bold]Driving time:[/bold] {summary.total_duration} min")
        status = "complete" if summary.is_complete else "in progress"
        console.print(f"[bold]Status:[/bold] {status}")

    _run("Journey", run())


@app.callback()
def callback(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings file (YAML/JSON)"),
    database: Optional[str] = typer.Option(None, "--database", "--db", help="Database URL"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    VisitTrack - Travel and visit leg tracking

    Record start, arrival, leaving and return checkpoints for appointments,
    with mileage and toll estimates per leg.
    """
    _options["config"] = config
    _options["database"] = database
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main():
    """Main entry point for CLI"""
    # Load environment variables
    from dotenv import load_dotenv
    load_dotenv()

    app()


if __name__ == "__main__":
    main()
