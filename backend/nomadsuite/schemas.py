from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator

from .countries import country_name


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


class TripCreateRequest(BaseModel):
    country: str = Field(min_length=1, max_length=100)
    entry_date: dt.date
    exit_date: Optional[dt.date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _validate_range(self) -> "TripCreateRequest":
        if self.exit_date is not None and self.exit_date < self.entry_date:
            raise ValueError("Exit date must not be before the entry date")
        return self


class TripResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    country: str
    entry_date: dt.date
    exit_date: Optional[dt.date]
    notes: Optional[str]
    created_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "country": self.country,
            "country_name": country_name(self.country),
            "entry_date": self.entry_date.isoformat(),
            "exit_date": self.exit_date.isoformat() if self.exit_date else None,
            "is_open": self.exit_date is None,
            "notes": self.notes,
            "created_at": _serialize_datetime(self.created_at),
        }


class CountryDaysResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    country: str
    country_name: str
    days: int
    alert_level: Literal["none", "yellow", "red"]
    message: str


class SchengenStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    days_used: int
    days_remaining: int
    alert_level: Literal["none", "yellow", "red"]
    message: str
    window_start: dt.date
    window_end: dt.date


class CountrySummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    country: str
    country_name: str
    total_days: int
    visits: int
    longest_stay: int


class TravelSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_countries: int
    country_summaries: List[CountrySummaryResponse]


class TripIssueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trip_id: Optional[int]
    country: str
    reason: str


class ExportRequest(BaseModel):
    format: Literal["xlsx"] = "xlsx"
    range_start: dt.date
    range_end: dt.date

    @model_validator(mode="after")
    def _validate_range(self) -> "ExportRequest":
        if self.range_end < self.range_start:
            raise ValueError("range_end must not be before range_start")
        return self


class ExportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    format: str
    range_start: dt.date
    range_end: dt.date
    checksum: str
    created_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "format": self.format,
            "range_start": self.range_start.isoformat(),
            "range_end": self.range_end.isoformat(),
            "checksum": self.checksum,
            "created_at": _serialize_datetime(self.created_at),
            "download_path": f"/api/exports/{self.id}",
        }


class SettingsResponse(BaseModel):
    environment: str
    timezone: str
    residency_threshold_days: int
    residency_warning_days: int
    schengen_limit_days: int
    schengen_window_days: int
    schengen_warning_days: int


class SettingsUpdateRequest(BaseModel):
    residency_threshold_days: Optional[int] = Field(default=None, ge=1, le=366)
    residency_warning_days: Optional[int] = Field(default=None, ge=1, le=366)
    schengen_limit_days: Optional[int] = Field(default=None, ge=1, le=3660)
    schengen_window_days: Optional[int] = Field(default=None, ge=1, le=3660)
    schengen_warning_days: Optional[int] = Field(default=None, ge=1, le=3660)
