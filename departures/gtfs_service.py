"""
GTFS feed service for the configured route.
Downloads, parses and caches the static schedule feed, then resolves the
next departures for the configured route/stop against the cached snapshot.
"""

import csv
import io
import logging
import threading
import time
import zipfile
import zlib
from collections import defaultdict

import requests
from django.conf import settings

from .clock import civil_instant
from .schedule import (
    ExceptionKind,
    FeedSnapshot,
    FrequencyWindow,
    InsufficientData,
    RouteSelector,
    ServiceCalendarRule,
    ServiceException,
    SourceKind,
    StopTimeEntry,
    Trip,
    Weekday,
    resolve,
    source_for,
)

logger = logging.getLogger(__name__)

GTFS_URL = "https://www.stm.info/sites/default/files/gtfs/gtfs_stm.zip"
CACHE_TTL = 6 * 3600  # 6 hours
RETRY_AFTER = 60
DOWNLOAD_TIMEOUT = 30
ANY_DIRECTION = "any"


class FeedError(Exception):
    """The feed could not be downloaded or read."""


def _setting(name, default):
    return getattr(settings, name, default)


def parse_gtfs_time(time_str):
    """Parse a GTFS time string (HH:MM:SS, may exceed 24h) into seconds from midnight."""
    h, m, s = map(int, time_str.strip().split(":"))
    if h < 0 or not 0 <= m < 60 or not 0 <= s < 60:
        raise ValueError(f"invalid GTFS time: {time_str!r}")
    return h * 3600 + m * 60 + s


def _download_gtfs(url, timeout):
    """Download the GTFS ZIP into memory."""
    headers = {"User-Agent": "Mozilla/5.0"}
    logger.info("Downloading GTFS feed from %s", url)
    try:
        r = requests.get(url, headers=headers, timeout=timeout)
        r.raise_for_status()
        return zipfile.ZipFile(io.BytesIO(r.content))
    except requests.RequestException as exc:
        raise FeedError(f"GTFS download failed: {exc}") from exc
    except zipfile.BadZipFile as exc:
        raise FeedError(f"GTFS archive is corrupt: {exc}") from exc


def _read_csv(zf, filename, required=True):
    """Parse a CSV file from the GTFS ZIP into a list of dicts."""
    names = {name.lower(): name for name in zf.namelist()}
    member = names.get(filename.lower())
    if member is None:
        if required:
            raise FeedError(f"Missing file in GTFS feed: {filename}")
        return []
    try:
        with zf.open(member) as raw:
            reader = csv.DictReader(io.TextIOWrapper(raw, encoding="utf-8-sig"))
            return [
                {k.strip(): (v or "").strip() for k, v in row.items() if k}
                for row in reader
            ]
    except (UnicodeDecodeError, csv.Error) as exc:
        raise FeedError(f"Unreadable {filename} in GTFS feed: {exc}") from exc
    except (zipfile.BadZipFile, zlib.error) as exc:
        raise FeedError(f"Corrupt {filename} in GTFS archive: {exc}") from exc


def _parse_calendar(rows):
    rules = {}
    for row in rows:
        sid = row.get("service_id", "")
        if not sid:
            continue
        rules[sid] = ServiceCalendarRule(
            service_id=sid,
            start_date=row.get("start_date", ""),
            end_date=row.get("end_date", ""),
            days=tuple(row.get(day.calendar_field, "0") == "1" for day in Weekday),
        )
    return rules


def _parse_calendar_dates(rows):
    exceptions = []
    for row in rows:
        sid = row.get("service_id", "")
        try:
            kind = ExceptionKind(int(row.get("exception_type", "")))
        except ValueError:
            continue
        if sid and row.get("date"):
            exceptions.append(ServiceException(sid, row["date"], kind))
    return tuple(exceptions)


def _parse_trips(rows):
    trips = {}
    for row in rows:
        tid = row.get("trip_id", "")
        if not tid or not row.get("route_id") or not row.get("service_id"):
            continue
        trips[tid] = Trip(
            trip_id=tid,
            route_id=row["route_id"],
            service_id=row["service_id"],
            direction_id=row.get("direction_id") or None,
            headsign=row.get("trip_headsign") or None,
        )
    return trips


def _parse_frequencies(rows):
    windows = []
    skipped = 0
    for row in rows:
        try:
            window = FrequencyWindow(
                trip_id=row["trip_id"],
                start=parse_gtfs_time(row["start_time"]),
                end=parse_gtfs_time(row["end_time"]),
                headway=int(row["headway_secs"]),
            )
        except (KeyError, ValueError):
            skipped += 1
            continue
        if not window.trip_id or window.headway <= 0 or window.start > window.end:
            skipped += 1
            continue
        windows.append(window)
    if skipped:
        logger.warning("Skipped %d malformed frequencies.txt rows", skipped)
    windows.sort(key=lambda w: (w.start, w.trip_id))
    return tuple(windows)


def _parse_stop_times(rows):
    # Index stop_times by stop_id, each list sorted by time
    index = defaultdict(list)
    skipped = 0
    for row in rows:
        time_str = row.get("departure_time") or row.get("arrival_time", "")
        if not row.get("trip_id") or not row.get("stop_id") or not time_str:
            skipped += 1
            continue
        try:
            seconds = parse_gtfs_time(time_str)
        except ValueError:
            skipped += 1
            continue
        index[row["stop_id"]].append(StopTimeEntry(row["trip_id"], row["stop_id"], seconds))
    if skipped:
        logger.warning("Skipped %d malformed stop_times.txt rows", skipped)
    return {
        sid: tuple(sorted(entries, key=lambda e: (e.seconds, e.trip_id)))
        for sid, entries in index.items()
    }


def build_snapshot(zf, source_kind=SourceKind.FREQUENCIES, version=1, loaded_at=None):
    """Parse the GTFS tables needed by ``source_kind`` into a FeedSnapshot."""
    source_kind = SourceKind(source_kind)
    # A feed may publish only calendar.txt or only calendar_dates.txt
    calendar = _read_csv(zf, "calendar.txt", required=False)
    calendar_dates = _read_csv(zf, "calendar_dates.txt", required=False)
    if not calendar and not calendar_dates:
        raise FeedError("GTFS feed has neither calendar.txt nor calendar_dates.txt")
    trips = _parse_trips(_read_csv(zf, "trips.txt"))

    frequencies = ()
    stop_times = {}
    if source_kind is SourceKind.FREQUENCIES:
        frequencies = _parse_frequencies(_read_csv(zf, "frequencies.txt"))
    else:
        stop_times = _parse_stop_times(_read_csv(zf, "stop_times.txt"))

    snapshot = FeedSnapshot(
        version=version,
        loaded_at=loaded_at if loaded_at is not None else time.time(),
        calendar_rules=_parse_calendar(calendar),
        exceptions=_parse_calendar_dates(calendar_dates),
        trips=trips,
        frequencies=frequencies,
        stop_times=stop_times,
    )
    logger.info(
        "Built feed snapshot v%d: %d services, %d exceptions, %d trips, %d windows, %d stops",
        snapshot.version,
        len(snapshot.calendar_rules),
        len(snapshot.exceptions),
        len(snapshot.trips),
        len(snapshot.frequencies),
        len(snapshot.stop_times),
    )
    return snapshot


class FeedStore:
    """Holds the current FeedSnapshot and replaces it when it goes stale.

    Readers get whichever complete snapshot is current; a refresh builds a
    new one off to the side and swaps the reference under the lock.
    """

    def __init__(self, url=GTFS_URL, source_kind=SourceKind.FREQUENCIES,
                 ttl=CACHE_TTL, timeout=DOWNLOAD_TIMEOUT, retry_after=RETRY_AFTER):
        self.url = url
        self.source_kind = SourceKind(source_kind)
        self.ttl = ttl
        self.timeout = timeout
        self.retry_after = retry_after
        self._lock = threading.Lock()
        self._snapshot = None
        self._failed_at = 0.0

    @property
    def snapshot(self):
        return self._snapshot

    def _is_fresh(self, now):
        with self._lock:
            snap = self._snapshot
            if snap is not None and (now - snap.loaded_at) < self.ttl:
                return True
            return snap is not None and (now - self._failed_at) < self.retry_after

    def get(self, force=False):
        """Return the current snapshot, refreshing it first if stale.

        Raises FeedError only when no snapshot has ever been loaded. After
        a failed first load, callers get FeedError without a new download
        until ``retry_after`` seconds have passed.
        """
        now = time.time()
        if not force and self._is_fresh(now):
            return self._snapshot
        with self._lock:
            # Nothing loaded yet and the last attempt just failed
            if not force and self._snapshot is None and (now - self._failed_at) < self.retry_after:
                raise FeedError("GTFS feed unavailable, waiting before the next download attempt")
        try:
            return self.refresh()
        except FeedError:
            with self._lock:
                self._failed_at = time.time()
                stale = self._snapshot
            if stale is None:
                raise
            logger.exception("Feed refresh failed, keeping snapshot v%d", stale.version)
            return stale

    def refresh(self):
        # Download outside the lock to avoid blocking readers
        zf = _download_gtfs(self.url, self.timeout)
        with self._lock:
            version = self._snapshot.version + 1 if self._snapshot is not None else 1
        snapshot = build_snapshot(zf, self.source_kind, version=version)
        with self._lock:
            self._snapshot = snapshot
        logger.info("Feed snapshot v%d is now current", snapshot.version)
        return snapshot


_store = None
_store_lock = threading.Lock()


def get_feed_store():
    """Process-wide FeedStore built from settings."""
    global _store
    with _store_lock:
        if _store is None:
            _store = FeedStore(
                url=_setting("GTFS_ZIP_URL", GTFS_URL),
                source_kind=_setting("SCHEDULE_SOURCE", SourceKind.FREQUENCIES.value),
                ttl=_setting("FEED_REFRESH_SECONDS", CACHE_TTL),
                timeout=_setting("FEED_TIMEOUT_SECONDS", DOWNLOAD_TIMEOUT),
            )
        return _store


def reset_feed_store():
    """Drop the process-wide store so the next call rebuilds it from settings."""
    global _store
    with _store_lock:
        _store = None


def configured_selector(route_id=None, direction_id=None, headsign=None, stop_id=None):
    """Route selector from settings, with optional overrides.

    ``direction_id=ANY_DIRECTION`` matches trips in every direction, even
    when ``TRANSIT_DIRECTION_ID`` is set.
    """
    if direction_id is None:
        direction_id = _setting("TRANSIT_DIRECTION_ID", None)
    elif direction_id.lower() == ANY_DIRECTION:
        direction_id = None
    return RouteSelector(
        route_id=route_id or _setting("TRANSIT_ROUTE_ID", "4"),
        direction_id=direction_id,
        headsign=headsign if headsign is not None else _setting("TRANSIT_HEADSIGN", None),
        stop_id=stop_id if stop_id is not None else _setting("TRANSIT_STOP_ID", None),
    )


def get_next_departures(selector=None, now=None, refresh=False, store=None):
    """
    Resolve the next departures for the configured route.

    Returns (result, instant, snapshot) where result is a Departures,
    OutOfService or InsufficientData value. Feed failures come back as
    InsufficientData; they are never raised to the caller.
    """
    store = store or get_feed_store()
    selector = selector or configured_selector()
    instant = civil_instant(_setting("TRANSIT_TIMEZONE", "America/Toronto"), now)

    try:
        snapshot = store.get(force=refresh)
    except FeedError as exc:
        logger.exception("No feed snapshot available")
        return InsufficientData(str(exc)), instant, None

    count = _setting("DEPARTURE_COUNT", 2)
    result = resolve(
        snapshot,
        selector,
        instant,
        source=source_for(store.source_kind, per_window=count),
        count=count,
        dedupe_tolerance=_setting("DEDUPE_TOLERANCE_SECONDS", 10),
    )
    logger.debug("Route %s at %s+%ds: %r", selector.route_id, instant.ymd, instant.seconds, result)
    return result, instant, snapshot
