from __future__ import annotations

from datetime import date as Date
from datetime import datetime, time, timedelta, timezone, tzinfo

MS_PER_DAY = 86_400_000

_LAST_MOMENT = time(23, 59, 59, 999_000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_aware(moment: datetime) -> datetime:
    """Naive datetimes are read as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def local_date(moment: datetime, *, tz: tzinfo = timezone.utc) -> Date:
    return to_aware(moment).astimezone(tz).date()


def start_of_day(moment: datetime, *, tz: tzinfo = timezone.utc) -> datetime:
    return datetime.combine(local_date(moment, tz=tz), time.min, tzinfo=tz)


def end_of_day(moment: datetime, *, tz: tzinfo = timezone.utc) -> datetime:
    return datetime.combine(local_date(moment, tz=tz), _LAST_MOMENT, tzinfo=tz)


def _key_for_date(day: Date, tz: tzinfo) -> int:
    midnight = datetime.combine(day, time.min, tzinfo=tz)
    return int(midnight.timestamp()) * 1000


def day_key(moment: datetime, *, tz: tzinfo = timezone.utc) -> int:
    return _key_for_date(local_date(moment, tz=tz), tz)


def enumerate_day_keys(
    start: datetime, end: datetime, *, tz: tzinfo = timezone.utc
) -> list[int]:
    # Walk calendar dates rather than fixed 24h steps so DST days stay aligned.
    cursor = local_date(start, tz=tz)
    last = local_date(end, tz=tz)
    keys: list[int] = []
    while cursor <= last:
        keys.append(_key_for_date(cursor, tz))
        cursor += timedelta(days=1)
    return keys


def duration_days(
    start: datetime,
    end: datetime | None,
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> int:
    last = end if end is not None else now
    days = (local_date(last, tz=tz) - local_date(start, tz=tz)).days + 1
    return max(1, days)


def resolve_scoreboard_end(
    challenge_start: datetime,
    challenge_end: datetime | None,
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> datetime | None:
    """Last moment whose day is fully elapsed and may be scored.

    Returns None when no full day has elapsed since the challenge started.
    """
    today_start = start_of_day(now, tz=tz)
    if challenge_end is not None and to_aware(challenge_end) < today_start:
        return challenge_end

    previous_day = today_start - timedelta(milliseconds=1)
    if previous_day < to_aware(challenge_start):
        return None
    return previous_day
