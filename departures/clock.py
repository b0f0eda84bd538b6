"""Civil date/time in the feed's timezone."""

from datetime import datetime
from zoneinfo import ZoneInfo

from .schedule import CivilInstant, Weekday


def civil_instant(tz_name, now=None):
    """Resolve ``now`` (aware datetime, default current time) to a CivilInstant in ``tz_name``.

    Naive datetimes are rejected: their zone would be the host's, not the feed's.
    """
    if now is not None and (now.tzinfo is None or now.utcoffset() is None):
        raise ValueError(f"civil_instant needs a timezone-aware datetime, got {now!r}")
    tz = ZoneInfo(tz_name)
    local = now.astimezone(tz) if now is not None else datetime.now(tz)
    seconds = local.hour * 3600 + local.minute * 60 + local.second
    return CivilInstant(local.date(), Weekday.from_date(local.date()), seconds)
