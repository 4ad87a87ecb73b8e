from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING, Any

from habitduel.core.config import settings
from habitduel.schemas.challenges import (
    Challenge,
    ChallengeSummary,
    Discipline,
    DisciplineProgressSide,
    DisciplineProgressSummary,
    HabitMeta,
    Participant,
)
from habitduel.services.errors import ForbiddenError, NotFoundError
from habitduel.services.log_aggregator import DailyLogSummary, fetch_log_summary
from habitduel.services.scoring import (
    discipline_winner,
    goal_ratio,
    overall_winner,
    score_discipline,
)
from habitduel.services.time_window import (
    day_key,
    duration_days,
    resolve_scoreboard_end,
    start_of_day,
    to_aware,
    utc_now,
)

if TYPE_CHECKING:
    from habitduel.services.challenge_store import ChallengeStore

DEFAULT_USERNAME = "user"


@dataclass(frozen=True)
class SummaryWindow:
    duration_days: int
    active_range_end: datetime
    progress_day_key: int
    scoreboard_end: datetime | None


@dataclass(frozen=True)
class DisciplineLogs:
    owner: DailyLogSummary
    challenger: DailyLogSummary | None = None


def summary_window(challenge: Challenge, *, now: datetime, tz: tzinfo) -> SummaryWindow:
    start = to_aware(challenge.start_date)
    end = to_aware(challenge.end_date) if challenge.end_date is not None else None

    active_range_end = end if end is not None and end < now else now
    today_start = start_of_day(now, tz=tz)
    # Today's completion display; scoring itself stops at the scoreboard end.
    progress_day = active_range_end if active_range_end < today_start else today_start

    return SummaryWindow(
        duration_days=duration_days(start, end, now=now, tz=tz),
        active_range_end=active_range_end,
        progress_day_key=day_key(progress_day, tz=tz),
        scoreboard_end=resolve_scoreboard_end(start, end, now=now, tz=tz),
    )


def _habit_meta(row: dict[str, Any] | None) -> HabitMeta | None:
    if not row or not row.get("id") or not row.get("name"):
        return None
    return HabitMeta(
        id=str(row["id"]),
        name=str(row["name"]),
        type=str(row.get("type") or ""),
        unit=str(row.get("unit") or ""),
        emoji=str(row.get("emoji") or ""),
        color=str(row.get("color") or "zinc"),
        category=row.get("category"),
    )


def _participant(
    user_id: str | None, profiles: dict[str, dict[str, Any]]
) -> Participant | None:
    if not user_id:
        return None
    row = profiles.get(user_id) or {}
    return Participant(
        id=user_id,
        username=str(row.get("username") or DEFAULT_USERNAME),
        avatar=str(row.get("avatar_url") or ""),
    )


def _progress_side(
    *,
    user_id: str,
    habit_id: str,
    logs: DailyLogSummary,
    daily_goal: float,
    target_total: float,
    progress_day_key: int,
    habit_row: dict[str, Any] | None,
) -> DisciplineProgressSide:
    today_total = logs.daily_totals.get(progress_day_key, 0.0)
    return DisciplineProgressSide(
        user_id=user_id,
        habit_id=habit_id,
        total=logs.total,
        daily_goal=daily_goal,
        target_total=target_total,
        completion_ratio=logs.total / target_total if target_total > 0 else 0.0,
        today_total=today_total,
        today_completion_ratio=goal_ratio(today_total, daily_goal),
        habit=_habit_meta(habit_row),
    )


def _summarize_discipline(
    challenge: Challenge,
    discipline: Discipline,
    logs: DisciplineLogs,
    *,
    window: SummaryWindow,
    habits: dict[str, dict[str, Any]],
    tz: tzinfo,
) -> DisciplineProgressSummary:
    daily_goal = discipline.daily_goal
    target_total = daily_goal * window.duration_days if daily_goal > 0 else 0.0

    owner_side = _progress_side(
        user_id=challenge.owner_id,
        habit_id=discipline.owner_habit_id,
        logs=logs.owner,
        daily_goal=daily_goal,
        target_total=target_total,
        progress_day_key=window.progress_day_key,
        habit_row=habits.get(discipline.owner_habit_id),
    )

    challenger_side: DisciplineProgressSide | None = None
    if logs.challenger is not None and challenge.opponent_id and discipline.challenger_habit_id:
        challenger_side = _progress_side(
            user_id=challenge.opponent_id,
            habit_id=discipline.challenger_habit_id,
            logs=logs.challenger,
            daily_goal=daily_goal,
            target_total=target_total,
            progress_day_key=window.progress_day_key,
            habit_row=habits.get(discipline.challenger_habit_id),
        )

    score = score_discipline(
        owner_daily_totals=logs.owner.daily_totals,
        opponent_daily_totals=logs.challenger.daily_totals if logs.challenger else None,
        start=to_aware(challenge.start_date),
        scoreboard_end=window.scoreboard_end,
        daily_goal=daily_goal,
        challenge_type=discipline.type,
        tz=tz,
    )

    return DisciplineProgressSummary(
        id=discipline.id,
        type=discipline.type,
        owner=owner_side,
        challenger=challenger_side,
        winner=discipline_winner(
            challenge_type=discipline.type,
            owner_total=owner_side.total,
            owner_ratio=owner_side.completion_ratio,
            target_total=target_total,
            challenger_total=challenger_side.total if challenger_side else None,
            challenger_ratio=challenger_side.completion_ratio if challenger_side else None,
        ),
        duration_days=window.duration_days,
        owner_score=score.owner,
        opponent_score=score.opponent if discipline.type == "friend" else 0,
        draws=score.draws,
        pending_challenger_habit=discipline.pending_challenger_habit,
    )


def build_challenge_summary(
    challenge: Challenge,
    *,
    logs: dict[str, DisciplineLogs],
    habits: dict[str, dict[str, Any]],
    profiles: dict[str, dict[str, Any]],
    now: datetime,
    tz: tzinfo,
) -> ChallengeSummary:
    window = summary_window(challenge, now=now, tz=tz)

    disciplines: list[DisciplineProgressSummary] = []
    owner_wins = opponent_wins = draws = 0
    for discipline in challenge.disciplines:
        summary = _summarize_discipline(
            challenge,
            discipline,
            logs.get(discipline.id) or DisciplineLogs(owner=DailyLogSummary()),
            window=window,
            habits=habits,
            tz=tz,
        )
        owner_wins += summary.owner_score
        opponent_wins += summary.opponent_score
        draws += summary.draws
        disciplines.append(summary)

    return ChallengeSummary(
        id=challenge.id,
        title=challenge.title,
        type=challenge.type,
        status=challenge.status,
        owner_id=challenge.owner_id,
        opponent_id=challenge.opponent_id,
        start_date=challenge.start_date,
        end_date=challenge.end_date,
        awaiting_user_id=challenge.awaiting_user_id,
        initiator_id=challenge.initiator_id or challenge.owner_id,
        disciplines=disciplines,
        owner_wins=owner_wins,
        opponent_wins=opponent_wins,
        draws=draws,
        overall_winner=overall_winner(owner_wins, opponent_wins, draws),
        duration_days=window.duration_days,
        owner=_participant(challenge.owner_id, profiles),
        opponent=_participant(challenge.opponent_id, profiles),
        owner_requested_finish=challenge.owner_wants_to_finish,
        opponent_requested_finish=challenge.opponent_wants_to_finish,
    )


async def summarize_challenge(
    store: ChallengeStore,
    challenge: Challenge,
    viewer_id: str,
    *,
    now: datetime,
    tz: tzinfo,
) -> ChallengeSummary:
    if not challenge.is_participant(viewer_id):
        raise ForbiddenError("Not allowed to view this challenge")

    window = summary_window(challenge, now=now, tz=tz)
    start = to_aware(challenge.start_date)

    habit_ids: list[str] = []
    logs: dict[str, DisciplineLogs] = {}
    for discipline in challenge.disciplines:
        habit_ids.append(discipline.owner_habit_id)
        owner_logs = await fetch_log_summary(
            store,
            user_id=challenge.owner_id,
            habit_id=discipline.owner_habit_id,
            start=start,
            end=window.active_range_end,
            now=now,
            tz=tz,
        )
        challenger_logs: DailyLogSummary | None = None
        if (
            discipline.type == "friend"
            and challenge.opponent_id
            and discipline.challenger_habit_id
        ):
            habit_ids.append(discipline.challenger_habit_id)
            challenger_logs = await fetch_log_summary(
                store,
                user_id=challenge.opponent_id,
                habit_id=discipline.challenger_habit_id,
                start=start,
                end=window.active_range_end,
                now=now,
                tz=tz,
            )
        logs[discipline.id] = DisciplineLogs(owner=owner_logs, challenger=challenger_logs)

    habit_rows = await store.find_habits(habit_ids)
    profiles = await store.find_participants(
        [u for u in (challenge.owner_id, challenge.opponent_id) if u]
    )
    return build_challenge_summary(
        challenge,
        logs=logs,
        habits={str(row["id"]): row for row in habit_rows if row.get("id")},
        profiles=profiles,
        now=now,
        tz=tz,
    )


async def get_challenge_summary(
    store: ChallengeStore,
    challenge_id: str,
    viewer_id: str,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> ChallengeSummary:
    # One clock read per request keeps every day boundary consistent.
    current = to_aware(now) if now is not None else utc_now()
    challenge = await store.get_challenge(challenge_id)
    if challenge is None:
        raise NotFoundError("Challenge not found")
    return await summarize_challenge(
        store,
        challenge,
        viewer_id,
        now=current,
        tz=tz or settings.challenge_tz(),
    )
