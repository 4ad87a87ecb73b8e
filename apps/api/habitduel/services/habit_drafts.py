from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from habitduel.schemas.challenges import (
    HABIT_CATEGORIES,
    HABIT_COLORS,
    HabitDraft,
    HabitDraftInput,
)
from habitduel.services.errors import ValidationError

if TYPE_CHECKING:
    from habitduel.services.challenge_store import ChallengeStore

NAME_MAX = 80
UNIT_MAX = 40
EMOJI_MAX = 4
DESCRIPTION_MAX = 280

CHECK_HABIT_TYPES = frozenset({"boolean", "checkbox", "check"})


@dataclass(frozen=True)
class ExistingHabit:
    habit_id: str


@dataclass(frozen=True)
class DraftHabit:
    draft: HabitDraft


HabitReference = ExistingHabit | DraftHabit


def is_check_habit_type(habit_type: Any) -> bool:
    if not habit_type:
        return False
    return str(habit_type) in CHECK_HABIT_TYPES


def _text(value: Any, limit: int | None = None) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    return text[:limit] if limit is not None else text


def normalize_habit_draft(
    raw: HabitDraftInput | HabitDraft | dict[str, Any] | None,
) -> HabitDraft | None:
    """Trim and clamp an inline habit payload; None when it cannot form a habit."""
    if raw is None:
        return None
    data = raw.model_dump() if isinstance(raw, BaseModel) else dict(raw)

    name = _text(data.get("name"), NAME_MAX)
    habit_type = _text(data.get("type"))
    unit = _text(data.get("unit"), UNIT_MAX)
    if not name or not habit_type or not unit:
        return None

    category = _text(data.get("category"))
    color = _text(data.get("color"))
    description = _text(data.get("description"), DESCRIPTION_MAX)
    return HabitDraft(
        name=name,
        type=habit_type,
        unit=unit,
        category=category if category in HABIT_CATEGORIES else "personal",
        color=color if color in HABIT_COLORS else "zinc",
        emoji=_text(data.get("emoji"), EMOJI_MAX),
        description=description or None,
    )


def resolve_habit_reference(
    habit_id: str | None,
    draft: HabitDraftInput | None,
    *,
    label: str,
) -> HabitReference | None:
    """Turn an id/draft pair into a reference; None when neither was given."""
    if habit_id and draft is not None:
        raise ValidationError(
            f"Choose an existing {label} habit or describe a new one, not both"
        )
    if habit_id:
        return ExistingHabit(habit_id=habit_id)
    if draft is None:
        return None
    normalized = normalize_habit_draft(draft)
    if normalized is None:
        raise ValidationError(f"The new {label} habit needs a name, type and unit")
    return DraftHabit(draft=normalized)


async def materialize_habit_draft(
    store: ChallengeStore, owner_id: str, draft: HabitDraft | HabitDraftInput
) -> dict[str, Any]:
    normalized = normalize_habit_draft(draft)
    if normalized is None:
        raise ValidationError("The habit draft is not valid")
    habit = await store.create_habit(owner_id, normalized)
    if not habit.get("id"):
        raise RuntimeError("Habit store returned no row for the created habit")
    return habit
