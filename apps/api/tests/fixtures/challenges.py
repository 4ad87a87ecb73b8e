from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from habitduel.schemas.challenges import Challenge, Discipline

OWNER_ID = "00000000-0000-4000-8000-000000000001"
OPPONENT_ID = "00000000-0000-4000-8000-000000000002"
OUTSIDER_ID = "00000000-0000-4000-8000-000000000003"

NOW = datetime(2024, 5, 10, 15, 30, tzinfo=timezone.utc)


def at(day: int, hour: int = 12) -> datetime:
    """A moment in May 2024 (UTC)."""
    return datetime(2024, 5, day, hour, tzinfo=timezone.utc)


def make_discipline(**overrides: Any) -> Discipline:
    data: dict[str, Any] = {
        "id": "disc-1",
        "type": "friend",
        "owner_id": OWNER_ID,
        "challenger_id": OPPONENT_ID,
        "owner_habit_id": "habit-owner",
        "challenger_habit_id": "habit-opponent",
        "daily_goal": 1.0,
    }
    data.update(overrides)
    return Discipline(**data)


def make_challenge(**overrides: Any) -> Challenge:
    data: dict[str, Any] = {
        "id": "challenge-1",
        "title": "May duel",
        "type": "friend",
        "status": "active",
        "owner_id": OWNER_ID,
        "opponent_id": OPPONENT_ID,
        "initiator_id": OWNER_ID,
        "awaiting_user_id": None,
        "start_date": at(1, 0),
        "end_date": None,
        "disciplines": [make_discipline()],
        "version": 0,
        "created_at": at(1, 0),
    }
    data.update(overrides)
    return Challenge(**data)


def make_personal_challenge(**overrides: Any) -> Challenge:
    data: dict[str, Any] = {
        "type": "personal",
        "opponent_id": None,
        "disciplines": [
            make_discipline(type="personal", challenger_id=None, challenger_habit_id=None)
        ],
    }
    data.update(overrides)
    return make_challenge(**data)
