from __future__ import annotations

import datetime as dt
import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from openpyxl import Workbook
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from .compliance import (
    CountryDays,
    SchengenStatus,
    TravelSummary,
    TripIssue,
    TripRecord,
    evaluate_schengen,
    evaluate_tax_residency,
    find_overlap,
    partition_trips,
    summarize_travel,
    trip_days,
)
from .config import settings
from .countries import UnknownCountryError, country_name, normalize_country
from .models import ExportRecord, Trip
from .state import RuntimeState

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)


def _now() -> dt.datetime:
    return dt.datetime.now(UTC)


def today() -> dt.date:
    """Current calendar date in the configured timezone."""
    return _now().astimezone(LOCAL_TZ).date()


def resolve_as_of(as_of: Optional[dt.date]) -> dt.date:
    return as_of if as_of is not None else today()


def list_trips(db: Session) -> List[Trip]:
    return db.query(Trip).order_by(Trip.entry_date.desc(), Trip.id.desc()).all()


def get_trip(db: Session, trip_id: int) -> Trip:
    trip = db.get(Trip, trip_id)
    if not trip:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trip not found")
    return trip


def load_trip_records(db: Session) -> List[TripRecord]:
    return [trip.to_record() for trip in db.query(Trip).order_by(Trip.entry_date.asc(), Trip.id.asc()).all()]


def create_trip(
    db: Session,
    country: str,
    entry_date: dt.date,
    exit_date: Optional[dt.date],
    notes: Optional[str],
) -> Trip:
    if exit_date is not None and exit_date < entry_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Exit date lies before the entry date")
    try:
        code = normalize_country(country)
    except UnknownCountryError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    candidate = TripRecord(country=code, entry_date=entry_date, exit_date=exit_date)
    conflict = find_overlap(candidate, load_trip_records(db))
    if conflict is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"Trip overlaps with existing trip to {country_name(conflict.country)} "
                f"starting {conflict.entry_date.isoformat()}"
            ),
        )

    trip = Trip(
        country=code,
        entry_date=entry_date,
        exit_date=exit_date,
        notes=notes.strip() if notes and notes.strip() else None,
    )
    db.add(trip)
    db.commit()
    db.refresh(trip)
    logger.info("Created trip %s to %s (%s - %s)", trip.id, code, entry_date, exit_date or "ongoing")
    return trip


def tax_residency_report(
    db: Session,
    state: RuntimeState,
    as_of: Optional[dt.date] = None,
    year: Optional[int] = None,
) -> List[CountryDays]:
    return evaluate_tax_residency(load_trip_records(db), resolve_as_of(as_of), year, state.thresholds)


def schengen_report(db: Session, state: RuntimeState, as_of: Optional[dt.date] = None) -> SchengenStatus:
    return evaluate_schengen(load_trip_records(db), resolve_as_of(as_of), state.thresholds)


def travel_summary_report(db: Session, as_of: Optional[dt.date] = None) -> TravelSummary:
    return summarize_travel(load_trip_records(db), resolve_as_of(as_of))


def integrity_report(db: Session, as_of: Optional[dt.date] = None) -> List[TripIssue]:
    _valid, issues = partition_trips(load_trip_records(db), resolve_as_of(as_of))
    return issues


def update_runtime_settings(db: Session, state: RuntimeState, updates: Dict[str, Any]) -> Dict[str, Any]:
    try:
        state.apply(updates)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    state.persist(db, updates)
    logger.info("Updated alert thresholds: %s", {k: v for k, v in updates.items() if v is not None})
    return state.snapshot()


def _trips_in_range(db: Session, start_date: dt.date, end_date: dt.date) -> List[Trip]:
    return (
        db.query(Trip)
        .filter(
            and_(
                Trip.entry_date <= end_date,
                or_(Trip.exit_date.is_(None), Trip.exit_date >= start_date),
            )
        )
        .order_by(Trip.entry_date.asc(), Trip.id.asc())
        .all()
    )


def _write_travel_xlsx(
    path: Path,
    trips: List[Trip],
    residency: List[CountryDays],
    summary: TravelSummary,
    as_of: dt.date,
) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Trips"
    ws.append(["Country", "Code", "Entry", "Exit", "Days", "Notes"])
    for trip in trips:
        ws.append(
            [
                country_name(trip.country),
                trip.country,
                trip.entry_date.isoformat(),
                trip.exit_date.isoformat() if trip.exit_date else "ongoing",
                trip_days(trip.to_record(), as_of),
                trip.notes or "",
            ]
        )

    residency_ws = wb.create_sheet("Tax residency")
    residency_ws.append(["Country", "Code", "Days", "Alert", "Message"])
    for entry in residency:
        residency_ws.append([entry.country_name, entry.country, entry.days, entry.alert_level, entry.message])

    summary_ws = wb.create_sheet("Summary")
    summary_ws.append(["Country", "Code", "Total days", "Visits", "Longest stay"])
    for item in summary.country_summaries:
        summary_ws.append([item.country_name, item.country, item.total_days, item.visits, item.longest_stay])
    summary_ws.append([])
    summary_ws.append(["Countries visited", summary.total_countries])
    wb.save(path)


def _checksum_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            digest.update(chunk)
    return digest.hexdigest()


def export_travel_report(
    db: Session,
    state: RuntimeState,
    export_format: str,
    start_date: dt.date,
    end_date: dt.date,
    as_of: Optional[dt.date] = None,
) -> ExportRecord:
    if export_format != "xlsx":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported export format")
    if end_date < start_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="End date lies before the start date")

    reference = resolve_as_of(as_of)
    trips = _trips_in_range(db, start_date, end_date)
    records, _issues = partition_trips([trip.to_record() for trip in trips], reference)
    residency = evaluate_tax_residency(records, reference, end_date.year, state.thresholds)
    summary = summarize_travel(records, reference)

    filename = f"travel_{start_date}_{end_date}_{int(_now().timestamp() * 1000)}.xlsx"
    path = settings.export_dir / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    _write_travel_xlsx(path, trips, residency, summary, reference)

    export = ExportRecord(
        format=export_format,
        range_start=start_date,
        range_end=end_date,
        path=str(path),
        checksum=_checksum_file(path),
    )
    db.add(export)
    db.commit()
    db.refresh(export)
    logger.info("Wrote travel report %s with %d trips", path, len(trips))
    return export


def resolve_export_path(db: Session, export_id: int) -> Path:
    export = db.get(ExportRecord, export_id)
    if not export:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export not found")
    path = Path(export.path)
    if not path.exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export file missing")
    return path
