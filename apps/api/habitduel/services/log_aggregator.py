from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date as Date
from datetime import datetime, time, timezone, tzinfo
from typing import TYPE_CHECKING, Any

from habitduel.services.time_window import day_key, end_of_day, start_of_day, to_aware

if TYPE_CHECKING:
    from habitduel.services.challenge_store import ChallengeStore


@dataclass(frozen=True)
class DailyLogSummary:
    total: float = 0.0
    daily_totals: dict[int, float] = field(default_factory=dict)


def coerce_log_value(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _coerce_moment(value: Any, tz: tzinfo) -> datetime | None:
    if isinstance(value, datetime):
        return to_aware(value)
    if isinstance(value, Date):
        return datetime.combine(value, time.min, tzinfo=tz)
    if isinstance(value, str):
        raw = value.strip()
        try:
            if len(raw) == 10:
                return datetime.combine(Date.fromisoformat(raw), time.min, tzinfo=tz)
            if raw.endswith("Z"):
                raw = f"{raw[:-1]}+00:00"
            return to_aware(datetime.fromisoformat(raw))
        except ValueError:
            return None
    return None


def summarize_logs(
    rows: list[dict[str, Any]] | None, *, tz: tzinfo = timezone.utc
) -> DailyLogSummary:
    if not rows:
        return DailyLogSummary()

    total = 0.0
    daily_totals: dict[int, float] = {}
    for row in rows:
        value = coerce_log_value(row.get("value"))
        if value <= 0:
            continue
        moment = _coerce_moment(row.get("date"), tz)
        if moment is None:
            continue
        total += value
        key = day_key(moment, tz=tz)
        daily_totals[key] = daily_totals.get(key, 0.0) + value
    return DailyLogSummary(total=total, daily_totals=daily_totals)


async def fetch_log_summary(
    store: ChallengeStore,
    *,
    user_id: str,
    habit_id: str,
    start: datetime,
    end: datetime | None,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> DailyLogSummary:
    rows = await store.find_logs(
        user_id=user_id,
        habit_id=habit_id,
        start=start_of_day(start, tz=tz),
        end=end_of_day(end if end is not None else now, tz=tz),
    )
    return summarize_logs(rows, tz=tz)
