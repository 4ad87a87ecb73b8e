from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Literal

from habitduel.services.time_window import enumerate_day_keys

# Ratios closer than this count as the same day result.
DRAW_RATIO_EPSILON = 0.01


@dataclass(frozen=True)
class DisciplineDayScore:
    owner: int = 0
    opponent: int = 0
    draws: int = 0


def goal_ratio(value: float, daily_goal: float) -> float:
    return value / daily_goal if daily_goal > 0 else 0.0


def score_discipline(
    *,
    owner_daily_totals: dict[int, float],
    opponent_daily_totals: dict[int, float] | None,
    start: datetime,
    scoreboard_end: datetime | None,
    daily_goal: float,
    challenge_type: Literal["personal", "friend"],
    tz: tzinfo = timezone.utc,
) -> DisciplineDayScore:
    """Tally day wins for one discipline over the fully elapsed days.

    A draw day credits both sides and is also counted in ``draws``.
    """
    if scoreboard_end is None:
        return DisciplineDayScore()

    opponent_totals = opponent_daily_totals or {}
    owner = opponent = draws = 0
    for key in enumerate_day_keys(start, scoreboard_end, tz=tz):
        owner_ratio = goal_ratio(owner_daily_totals.get(key, 0.0), daily_goal)

        if challenge_type == "personal":
            if owner_ratio >= 1:
                owner += 1
            continue

        opponent_ratio = goal_ratio(opponent_totals.get(key, 0.0), daily_goal)
        ratios_equal = abs(owner_ratio - opponent_ratio) <= DRAW_RATIO_EPSILON
        any_progress = owner_ratio > 0 or opponent_ratio > 0

        if ratios_equal and any_progress:
            owner += 1
            opponent += 1
            draws += 1
        elif ratios_equal:
            continue
        elif owner_ratio > opponent_ratio:
            owner += 1
        else:
            opponent += 1

    return DisciplineDayScore(owner=owner, opponent=opponent, draws=draws)


def discipline_winner(
    *,
    challenge_type: Literal["personal", "friend"],
    owner_total: float,
    owner_ratio: float,
    target_total: float,
    challenger_total: float | None,
    challenger_ratio: float | None,
) -> Literal["owner", "challenger", "draw"] | None:
    """Standing of one discipline by completion ratio, then raw total."""
    if challenge_type == "personal":
        return "owner" if owner_total >= target_total else None
    if challenger_total is None or challenger_ratio is None:
        return None
    if owner_ratio > challenger_ratio:
        return "owner"
    if challenger_ratio > owner_ratio:
        return "challenger"
    if owner_total != challenger_total:
        return "owner" if owner_total > challenger_total else "challenger"
    return "draw"


def overall_winner(
    owner_wins: int, opponent_wins: int, draws: int
) -> Literal["owner", "opponent", "draw"] | None:
    if owner_wins > opponent_wins:
        return "owner"
    if opponent_wins > owner_wins:
        return "opponent"
    if owner_wins + opponent_wins + draws > 0:
        return "draw"
    return None
