from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from .config import settings
from .database import db_session, get_db, init_db
from .logging_utils import configure_logging
from .schemas import (
    CountryDaysResponse,
    ExportRequest,
    ExportResponse,
    SchengenStatusResponse,
    SettingsResponse,
    SettingsUpdateRequest,
    TravelSummaryResponse,
    TripCreateRequest,
    TripIssueResponse,
    TripResponse,
)
from .services import (
    create_trip,
    export_travel_report,
    get_trip,
    integrity_report,
    list_trips,
    resolve_export_path,
    schengen_report,
    tax_residency_report,
    travel_summary_report,
    update_runtime_settings,
)
from .state import RuntimeState

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

init_db()

runtime_state = RuntimeState(settings)
with db_session() as session:
    try:
        runtime_state.load_from_db(session)
    except ValueError as exc:
        logger.warning("Stored thresholds rejected, using configured defaults: %s", exc)

app = FastAPI(title=settings.app_name)
app.state.runtime_state = runtime_state
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _settings_response(snapshot: dict) -> SettingsResponse:
    return SettingsResponse(
        environment=settings.environment,
        timezone=settings.timezone,
        **snapshot,
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/trips", response_model=list[TripResponse])
def get_trips(db: Session = Depends(get_db)) -> list[TripResponse]:
    return list_trips(db)


@app.post("/api/trips", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
def post_trip(payload: TripCreateRequest, db: Session = Depends(get_db)) -> TripResponse:
    return create_trip(db, payload.country, payload.entry_date, payload.exit_date, payload.notes)


@app.get("/api/trips/calculations/tax-residency", response_model=list[CountryDaysResponse])
def get_tax_residency(
    request: Request,
    as_of: Optional[dt.date] = None,
    year: Optional[int] = Query(default=None, ge=1900, le=9999),
    db: Session = Depends(get_db),
) -> list[CountryDaysResponse]:
    state: RuntimeState = request.app.state.runtime_state
    return tax_residency_report(db, state, as_of, year)


@app.get("/api/trips/calculations/schengen", response_model=SchengenStatusResponse)
def get_schengen(
    request: Request,
    as_of: Optional[dt.date] = None,
    db: Session = Depends(get_db),
) -> SchengenStatusResponse:
    state: RuntimeState = request.app.state.runtime_state
    return schengen_report(db, state, as_of)


@app.get("/api/trips/calculations/summary", response_model=TravelSummaryResponse)
def get_summary(as_of: Optional[dt.date] = None, db: Session = Depends(get_db)) -> TravelSummaryResponse:
    return travel_summary_report(db, as_of)


@app.get("/api/trips/calculations/integrity", response_model=list[TripIssueResponse])
def get_integrity(as_of: Optional[dt.date] = None, db: Session = Depends(get_db)) -> list[TripIssueResponse]:
    return integrity_report(db, as_of)


@app.get("/api/trips/{trip_id}", response_model=TripResponse)
def get_single_trip(trip_id: int, db: Session = Depends(get_db)) -> TripResponse:
    return get_trip(db, trip_id)


@app.post("/api/exports", response_model=ExportResponse, status_code=status.HTTP_201_CREATED)
def create_export(
    payload: ExportRequest,
    request: Request,
    as_of: Optional[dt.date] = None,
    db: Session = Depends(get_db),
) -> ExportResponse:
    state: RuntimeState = request.app.state.runtime_state
    return export_travel_report(db, state, payload.format, payload.range_start, payload.range_end, as_of)


@app.get("/api/exports/{export_id}")
def download_export(export_id: int, db: Session = Depends(get_db)) -> FileResponse:
    path = resolve_export_path(db, export_id)
    return FileResponse(
        path,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=path.name,
    )


@app.get("/settings", response_model=SettingsResponse)
def read_settings(request: Request) -> SettingsResponse:
    state: RuntimeState = request.app.state.runtime_state
    return _settings_response(state.snapshot())


@app.put("/settings", response_model=SettingsResponse)
def write_settings(payload: SettingsUpdateRequest, request: Request, db: Session = Depends(get_db)) -> SettingsResponse:
    state: RuntimeState = request.app.state.runtime_state
    updates = payload.model_dump(exclude_unset=True)
    snapshot = update_runtime_settings(db, state, updates)
    return _settings_response(snapshot)
