"""
Schedule resolution for one route from a GTFS static feed snapshot.

Pure functions and immutable records only: no I/O, no clock reads.
Given a snapshot and a civil instant, work out which services run today
and the next departures with a time-until-departure label.
"""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum, IntEnum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

SECONDS_PER_DAY = 86400
DEFAULT_DEPARTURE_COUNT = 2
DEFAULT_DEDUPE_TOLERANCE = 10

ARRIVING_NOW = "Arriving now"
NO_DATA = "—"


class Weekday(IntEnum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        return cls(day.weekday())

    @property
    def calendar_field(self) -> str:
        """Column name of this day in calendar.txt."""
        return self.name.lower()


class ExceptionKind(IntEnum):
    """calendar_dates.txt exception_type values."""
    ADDED = 1
    REMOVED = 2


class SourceKind(str, Enum):
    FREQUENCIES = "frequencies"
    STOP_TIMES = "stop_times"


@dataclass(frozen=True)
class ServiceCalendarRule:
    service_id: str
    start_date: str  # YYYYMMDD
    end_date: str  # YYYYMMDD
    days: Tuple[bool, bool, bool, bool, bool, bool, bool]

    def runs_on(self, ymd: str, weekday: Weekday) -> bool:
        return self.start_date <= ymd <= self.end_date and self.days[weekday]


@dataclass(frozen=True)
class ServiceException:
    service_id: str
    date: str  # YYYYMMDD
    kind: ExceptionKind


@dataclass(frozen=True)
class Trip:
    trip_id: str
    route_id: str
    service_id: str
    direction_id: Optional[str] = None
    headsign: Optional[str] = None


@dataclass(frozen=True)
class FrequencyWindow:
    trip_id: str
    start: int
    end: int
    headway: int


@dataclass(frozen=True)
class StopTimeEntry:
    trip_id: str
    stop_id: str
    seconds: int


@dataclass(frozen=True, order=True)
class Candidate:
    seconds: int
    trip_id: str = ""
    service_id: str = ""


@dataclass(frozen=True)
class CivilInstant:
    """Local date, weekday and seconds since midnight in the feed timezone."""
    date: date
    weekday: Weekday
    seconds: int

    @property
    def ymd(self) -> str:
        return self.date.strftime("%Y%m%d")

    def previous_day(self) -> "CivilInstant":
        day = self.date - timedelta(days=1)
        return CivilInstant(day, Weekday.from_date(day), self.seconds + SECONDS_PER_DAY)


@dataclass(frozen=True)
class FeedSnapshot:
    """One immutable, fully parsed copy of the feed.

    Readers must treat the mappings as read-only; a refresh builds a new
    snapshot instead of touching this one.
    """
    version: int
    loaded_at: float
    calendar_rules: Mapping[str, ServiceCalendarRule]
    exceptions: Tuple[ServiceException, ...]
    trips: Mapping[str, Trip]
    frequencies: Tuple[FrequencyWindow, ...] = ()
    stop_times: Mapping[str, Tuple[StopTimeEntry, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class RouteSelector:
    route_id: str
    direction_id: Optional[str] = None
    headsign: Optional[str] = None
    stop_id: Optional[str] = None


@dataclass(frozen=True)
class Departure:
    seconds: int
    delta_seconds: int
    label: str


@dataclass(frozen=True)
class Departures:
    departures: Tuple[Departure, ...]

    def labels(self, count: int = DEFAULT_DEPARTURE_COUNT) -> List[str]:
        """Labels padded with the no-data placeholder up to ``count`` slots."""
        labels = [d.label for d in self.departures[:count]]
        return labels + [NO_DATA] * (count - len(labels))


@dataclass(frozen=True)
class OutOfService:
    reason: str = ""


@dataclass(frozen=True)
class InsufficientData:
    reason: str = ""


# --------------------------------------------------------------------------
# Service day
# --------------------------------------------------------------------------

def active_services(
    calendar_rules: Iterable[ServiceCalendarRule],
    exceptions: Iterable[ServiceException],
    ymd: str,
    weekday: Weekday,
) -> Set[str]:
    """Service ids running on ``ymd``.

    Exceptions override the weekly rule. When a service has both an
    Added and a Removed exception for the same date it ends up removed,
    whatever order the rows came in.
    """
    active = {rule.service_id for rule in calendar_rules if rule.runs_on(ymd, weekday)}

    todays = [exc for exc in exceptions if exc.date == ymd]
    for exc in todays:
        if exc.kind == ExceptionKind.ADDED:
            active.add(exc.service_id)
    for exc in todays:
        if exc.kind == ExceptionKind.REMOVED:
            active.discard(exc.service_id)

    return active


# --------------------------------------------------------------------------
# Trips
# --------------------------------------------------------------------------

def trips_for_route(
    trips: Iterable[Trip],
    route_id: str,
    direction_id: Optional[str] = None,
    headsign: Optional[str] = None,
) -> Set[str]:
    needle = headsign.lower() if headsign else None
    matched = set()
    for trip in trips:
        if trip.route_id != route_id:
            continue
        if direction_id is not None and (trip.direction_id or "") != direction_id:
            continue
        if needle and needle not in (trip.headsign or "").lower():
            continue
        matched.add(trip.trip_id)
    return matched


# --------------------------------------------------------------------------
# Schedule sources
# --------------------------------------------------------------------------

def _running_trips(snapshot: FeedSnapshot, services: Set[str], trip_ids: Set[str]) -> Dict[str, str]:
    """trip_id -> service_id for the selected trips running on ``services``."""
    running = {}
    for trip_id in trip_ids:
        trip = snapshot.trips.get(trip_id)
        if trip is not None and trip.service_id in services:
            running[trip_id] = trip.service_id
    return running


def window_departures(window: FrequencyWindow, now: int, limit: int = DEFAULT_DEPARTURE_COUNT) -> List[int]:
    """Next departures of one repeating window at or after ``now``."""
    if now > window.end:
        return []
    if now <= window.start:
        first = window.start
    else:
        steps = math.ceil((now - window.start) / window.headway)
        first = window.start + steps * window.headway

    times = []
    t = first
    while t <= window.end and len(times) < limit:
        times.append(t)
        t += window.headway
    return times


class FrequencySource:
    """Departures generated from frequencies.txt headway windows."""

    kind = SourceKind.FREQUENCIES

    def __init__(self, per_window: int = DEFAULT_DEPARTURE_COUNT):
        self.per_window = per_window

    def has_data(self, snapshot: FeedSnapshot, selector: RouteSelector, trip_ids: Set[str]) -> bool:
        return any(w.trip_id in trip_ids for w in snapshot.frequencies)

    def candidates(
        self,
        snapshot: FeedSnapshot,
        services: Set[str],
        trip_ids: Set[str],
        now: int,
        selector: Optional[RouteSelector] = None,
    ) -> List[Candidate]:
        running = _running_trips(snapshot, services, trip_ids)
        found = []
        for window in snapshot.frequencies:
            service_id = running.get(window.trip_id)
            if service_id is None:
                continue
            for t in window_departures(window, now, self.per_window):
                found.append(Candidate(t, window.trip_id, service_id))
        found.sort()
        return found


class StopTimeSource:
    """Literal departures at one stop from stop_times.txt."""

    kind = SourceKind.STOP_TIMES

    def has_data(self, snapshot: FeedSnapshot, selector: RouteSelector, trip_ids: Set[str]) -> bool:
        if not selector.stop_id:
            return False
        return any(e.trip_id in trip_ids for e in snapshot.stop_times.get(selector.stop_id, ()))

    def candidates(
        self,
        snapshot: FeedSnapshot,
        services: Set[str],
        trip_ids: Set[str],
        now: int,
        selector: Optional[RouteSelector] = None,
    ) -> List[Candidate]:
        if selector is None or not selector.stop_id:
            return []
        running = _running_trips(snapshot, services, trip_ids)
        found = sorted(
            Candidate(entry.seconds, entry.trip_id, running[entry.trip_id])
            for entry in snapshot.stop_times.get(selector.stop_id, ())
            if entry.trip_id in running
        )
        start = bisect.bisect_left([c.seconds for c in found], now)
        return found[start:]


def source_for(kind, per_window=DEFAULT_DEPARTURE_COUNT):
    kind = SourceKind(kind)
    if kind is SourceKind.STOP_TIMES:
        return StopTimeSource()
    return FrequencySource(per_window)


# --------------------------------------------------------------------------
# Projection
# --------------------------------------------------------------------------

def departure_label(delta_seconds: int) -> str:
    if delta_seconds < 60:
        return ARRIVING_NOW
    # nearest minute, halves round up
    return f"{(delta_seconds + 30) // 60} min"


def next_departures(
    candidates: Sequence[Candidate],
    now: int,
    count: int = DEFAULT_DEPARTURE_COUNT,
    dedupe_tolerance: int = DEFAULT_DEDUPE_TOLERANCE,
) -> List[Departure]:
    """Up to ``count`` departures from ascending ``candidates``.

    A candidate within ``dedupe_tolerance`` seconds of the last kept one
    is the same vehicle reported by two overlapping patterns and is
    dropped. Candidates already behind ``now`` are ignored.
    """
    kept: List[Departure] = []
    last = None
    for candidate in candidates:
        if len(kept) >= count:
            break
        if candidate.seconds < now:
            continue
        if last is not None and candidate.seconds - last <= dedupe_tolerance:
            continue
        delta = max(0, candidate.seconds - now)
        kept.append(Departure(candidate.seconds, delta, departure_label(delta)))
        last = candidate.seconds
    return kept


# --------------------------------------------------------------------------
# Pipeline
# --------------------------------------------------------------------------

def resolve(
    snapshot: Optional[FeedSnapshot],
    selector: RouteSelector,
    instant: CivilInstant,
    source=None,
    count: int = DEFAULT_DEPARTURE_COUNT,
    dedupe_tolerance: int = DEFAULT_DEDUPE_TOLERANCE,
):
    """Next departures for ``selector`` at ``instant``.

    Returns ``Departures``, ``OutOfService`` or ``InsufficientData``.
    Yesterday's post-midnight service is merged in, shifted onto today's
    clock.
    """
    if snapshot is None:
        return InsufficientData("no feed snapshot loaded")
    if source is None:
        source = FrequencySource()

    trip_ids = trips_for_route(
        snapshot.trips.values(), selector.route_id, selector.direction_id, selector.headsign
    )
    if not trip_ids:
        return InsufficientData(f"no trips for route {selector.route_id}")
    if source.kind is SourceKind.STOP_TIMES and not selector.stop_id:
        return InsufficientData("no stop configured for stop_times schedule")
    if not source.has_data(snapshot, selector, trip_ids):
        return InsufficientData(f"no {source.kind.value} rows for route {selector.route_id}")

    candidates = []
    any_service = False
    yesterday = instant.previous_day()
    for day, offset in ((instant, 0), (yesterday, SECONDS_PER_DAY)):
        services = active_services(
            snapshot.calendar_rules.values(), snapshot.exceptions, day.ymd, day.weekday
        )
        if not services:
            continue
        if offset == 0:
            any_service = True
        for c in source.candidates(snapshot, services, trip_ids, day.seconds, selector):
            candidates.append(Candidate(c.seconds - offset, c.trip_id, c.service_id))

    candidates.sort()
    departures = next_departures(candidates, instant.seconds, count, dedupe_tolerance)
    if departures:
        return Departures(tuple(departures))
    if not any_service:
        return OutOfService(f"no service on {instant.ymd}")
    return OutOfService("no departures left today")
