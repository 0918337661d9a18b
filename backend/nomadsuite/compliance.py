"""Travel compliance calculations.

Pure functions over a list of trips and an explicit ``as_of`` date. Nothing in
this module reads the clock, the database or the settings; callers inject the
reference date and the alert thresholds.
"""
from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from typing_extensions import Literal

from .countries import UnknownCountryError, country_name, is_schengen, normalize_country

logger = logging.getLogger(__name__)

AlertLevel = Literal["none", "yellow", "red"]


# ten years; longer rolling windows are rejected
MAX_WINDOW_DAYS = 3660
MAX_RESIDENCY_DAYS = 366


@dataclass(frozen=True)
class TripRecord:
    """A stay in one country, both boundary days inclusive. ``exit_date=None`` means ongoing."""

    country: str
    entry_date: dt.date
    exit_date: Optional[dt.date] = None
    id: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.exit_date is None

    def effective_exit(self, as_of: dt.date) -> dt.date:
        return self.exit_date if self.exit_date is not None else as_of


@dataclass(frozen=True)
class ComplianceThresholds:
    residency_threshold_days: int = 183
    # first day count that is flagged yellow
    residency_warning_days: int = 150
    schengen_limit_days: int = 90
    schengen_window_days: int = 180
    # yellow once days used exceed this value
    schengen_warning_days: int = 72

    def __post_init__(self) -> None:
        for item in dataclasses.fields(self):
            if getattr(self, item.name) <= 0:
                raise ValueError(f"{item.name} must be positive")
        if self.residency_threshold_days > MAX_RESIDENCY_DAYS:
            raise ValueError(f"residency_threshold_days must not exceed {MAX_RESIDENCY_DAYS}")
        if self.schengen_window_days > MAX_WINDOW_DAYS:
            raise ValueError(f"schengen_window_days must not exceed {MAX_WINDOW_DAYS}")
        if self.residency_warning_days > self.residency_threshold_days:
            raise ValueError("residency_warning_days must not exceed residency_threshold_days")
        if self.schengen_warning_days >= self.schengen_limit_days:
            raise ValueError("schengen_warning_days must be below schengen_limit_days")
        if self.schengen_limit_days > self.schengen_window_days:
            raise ValueError("schengen_limit_days must not exceed schengen_window_days")


DEFAULT_THRESHOLDS = ComplianceThresholds()


@dataclass(frozen=True)
class TripIssue:
    trip_id: Optional[int]
    country: str
    reason: str


@dataclass(frozen=True)
class CountryDays:
    country: str
    country_name: str
    days: int
    alert_level: AlertLevel
    message: str


@dataclass(frozen=True)
class SchengenStatus:
    days_used: int
    days_remaining: int
    alert_level: AlertLevel
    message: str
    window_start: dt.date
    window_end: dt.date


@dataclass(frozen=True)
class CountrySummary:
    country: str
    country_name: str
    total_days: int
    visits: int
    longest_stay: int


@dataclass(frozen=True)
class TravelSummary:
    total_countries: int
    country_summaries: List[CountrySummary] = field(default_factory=list)


def _check_window(window_start: dt.date, window_end: dt.date) -> None:
    if window_end < window_start:
        raise ValueError(f"Window end {window_end} lies before window start {window_start}")


def day_count(trip: TripRecord, window_start: dt.date, window_end: dt.date, as_of: dt.date) -> int:
    """Number of calendar days the trip overlaps ``[window_start, window_end]``, both ends inclusive."""
    _check_window(window_start, window_end)
    start = max(trip.entry_date, window_start)
    end = min(trip.effective_exit(as_of), window_end)
    if start > end:
        return 0
    return (end - start).days + 1


def trip_days(trip: TripRecord, as_of: dt.date) -> int:
    exit_date = trip.effective_exit(as_of)
    if exit_date < trip.entry_date:
        return 0
    return (exit_date - trip.entry_date).days + 1


def presence_days(
    trips: Iterable[TripRecord],
    window_start: dt.date,
    window_end: dt.date,
    as_of: dt.date,
) -> Set[dt.date]:
    """Dates inside the window on which at least one of the trips was ongoing."""
    _check_window(window_start, window_end)
    present: Set[dt.date] = set()
    for trip in trips:
        start = max(trip.entry_date, window_start)
        end = min(trip.effective_exit(as_of), window_end)
        for offset in range((end - start).days + 1):
            present.add(start + dt.timedelta(days=offset))
    return present


def partition_trips(trips: Iterable[TripRecord], as_of: dt.date) -> Tuple[List[TripRecord], List[TripIssue]]:
    """Split trips into usable records (with normalized country codes) and integrity issues.

    Skipped trips are logged and returned as :class:`TripIssue` so that callers can
    surface them instead of receiving negative day counts.
    """
    valid: List[TripRecord] = []
    issues: List[TripIssue] = []
    for trip in trips:
        reason: Optional[str] = None
        code = trip.country
        try:
            code = normalize_country(trip.country)
        except UnknownCountryError as exc:
            reason = str(exc)
        if reason is None and trip.exit_date is not None and trip.exit_date < trip.entry_date:
            reason = f"Exit date {trip.exit_date} lies before entry date {trip.entry_date}"
        if reason is None and trip.exit_date is None and trip.entry_date > as_of:
            reason = f"Ongoing trip starts after the reference date {as_of}"
        if reason is not None:
            logger.warning("Skipping trip %s (%s): %s", trip.id, trip.country, reason)
            issues.append(TripIssue(trip_id=trip.id, country=trip.country, reason=reason))
            continue
        valid.append(dataclasses.replace(trip, country=code) if code != trip.country else trip)
    return valid, issues


def _group_by_country(trips: Iterable[TripRecord]) -> Dict[str, List[TripRecord]]:
    grouped: Dict[str, List[TripRecord]] = defaultdict(list)
    for trip in trips:
        grouped[trip.country].append(trip)
    return grouped


def _residency_entry(code: str, days: int, year: int, thresholds: ComplianceThresholds) -> CountryDays:
    name = country_name(code)
    limit = thresholds.residency_threshold_days
    if days >= limit:
        level: AlertLevel = "red"
        over = days - limit
        if over:
            message = (
                f"Tax residency risk in {name}: {days} days in {year} "
                f"exceeds the {limit}-day threshold by {over} days"
            )
        else:
            message = f"Tax residency risk in {name}: {days} days in {year} reaches the {limit}-day threshold"
    elif days >= thresholds.residency_warning_days:
        level = "yellow"
        message = (
            f"Approaching tax residency in {name}: {days}/{limit} days in {year}, "
            f"{limit - days} days remaining"
        )
    else:
        level = "none"
        message = f"{days} days in {name} during {year}, {limit - days} days below the {limit}-day threshold"
    return CountryDays(country=code, country_name=name, days=days, alert_level=level, message=message)


def evaluate_tax_residency(
    trips: Iterable[TripRecord],
    as_of: dt.date,
    year: Optional[int] = None,
    thresholds: ComplianceThresholds = DEFAULT_THRESHOLDS,
) -> List[CountryDays]:
    """Days present per country in a calendar year, highest first.

    The year defaults to the year of ``as_of``. Ongoing trips count up to ``as_of``.
    """
    target_year = year if year is not None else as_of.year
    year_start = dt.date(target_year, 1, 1)
    year_end = dt.date(target_year, 12, 31)
    valid, _issues = partition_trips(trips, as_of)

    results: List[CountryDays] = []
    for code, country_trips in _group_by_country(valid).items():
        days = len(presence_days(country_trips, year_start, year_end, as_of))
        if days == 0:
            continue
        results.append(_residency_entry(code, days, target_year, thresholds))
    results.sort(key=lambda entry: (-entry.days, entry.country))
    return results


def schengen_window(as_of: dt.date, thresholds: ComplianceThresholds = DEFAULT_THRESHOLDS) -> Tuple[dt.date, dt.date]:
    """Inclusive window ending on ``as_of``, clamped to the first representable date."""
    span = dt.timedelta(days=thresholds.schengen_window_days - 1)
    if as_of - dt.date.min < span:
        return dt.date.min, as_of
    return as_of - span, as_of


def evaluate_schengen(
    trips: Iterable[TripRecord],
    as_of: dt.date,
    thresholds: ComplianceThresholds = DEFAULT_THRESHOLDS,
) -> SchengenStatus:
    """Schengen days used in the trailing window ending on ``as_of``.

    Days are counted once even when several Schengen trips cover the same date.
    ``days_used`` is deliberately not capped so that an overstay stays visible.
    """
    window_start, window_end = schengen_window(as_of, thresholds)
    valid, _issues = partition_trips(trips, as_of)
    schengen_trips = [trip for trip in valid if is_schengen(trip.country)]
    used = len(presence_days(schengen_trips, window_start, window_end, as_of))

    limit = thresholds.schengen_limit_days
    window = thresholds.schengen_window_days
    remaining = max(0, limit - used)
    if used >= limit:
        level: AlertLevel = "red"
        if used > limit:
            message = f"Schengen overstay: {used} days used in the last {window} days, {used - limit} over the {limit}-day limit"
        else:
            message = f"Schengen limit reached: {used}/{limit} days used in the last {window} days"
    elif used > thresholds.schengen_warning_days:
        level = "yellow"
        message = f"Warning: only {remaining} Schengen days remaining ({used}/{limit} used in the last {window} days)"
    else:
        level = "none"
        message = f"{used}/{limit} Schengen days used in the last {window} days, {remaining} remaining"

    return SchengenStatus(
        days_used=used,
        days_remaining=remaining,
        alert_level=level,
        message=message,
        window_start=window_start,
        window_end=window_end,
    )


def summarize_travel(trips: Iterable[TripRecord], as_of: dt.date) -> TravelSummary:
    valid, _issues = partition_trips(trips, as_of)
    summaries: List[CountrySummary] = []
    for code, country_trips in _group_by_country(valid).items():
        durations = [trip_days(trip, as_of) for trip in country_trips]
        summaries.append(
            CountrySummary(
                country=code,
                country_name=country_name(code),
                total_days=sum(durations),
                visits=len(durations),
                longest_stay=max(durations),
            )
        )
    summaries.sort(key=lambda entry: (-entry.total_days, entry.country))
    return TravelSummary(total_countries=len(summaries), country_summaries=summaries)


def trips_overlap(first: TripRecord, second: TripRecord) -> bool:
    """True when two trips share a day other than a single handover day.

    A handover day is the exit date of one trip being the entry date of the
    other: the traveler crossed a border that day and is recorded in both places.
    Ongoing trips have no end yet, so they overlap every trip that starts after them.
    """
    first_end = first.exit_date if first.exit_date is not None else dt.date.max
    second_end = second.exit_date if second.exit_date is not None else dt.date.max
    start = max(first.entry_date, second.entry_date)
    end = min(first_end, second_end)
    if start > end:
        return False
    if start < end:
        return True
    first_hands_over = first_end == second.entry_date and first.entry_date < second.entry_date
    second_hands_over = second_end == first.entry_date and second.entry_date < first.entry_date
    return not (first_hands_over or second_hands_over)


def find_overlap(
    candidate: TripRecord,
    existing: Sequence[TripRecord],
    exclude_id: Optional[int] = None,
) -> Optional[TripRecord]:
    for trip in existing:
        if exclude_id is not None and trip.id == exclude_id:
            continue
        if trips_overlap(candidate, trip):
            return trip
    return None
