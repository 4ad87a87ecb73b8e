from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal
from uuid import uuid4

from habitduel.core.config import settings
from habitduel.schemas.challenges import (
    Challenge,
    ChallengeStatus,
    CreateChallengeRequest,
    Discipline,
    DisciplineInput,
    RespondChallengeRequest,
)
from habitduel.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from habitduel.services.habit_drafts import (
    DraftHabit,
    ExistingHabit,
    HabitReference,
    is_check_habit_type,
    materialize_habit_draft,
    resolve_habit_reference,
)
from habitduel.services.time_window import to_aware, utc_now

if TYPE_CHECKING:
    from habitduel.services.challenge_store import ChallengeStore

logger = logging.getLogger(__name__)

Side = Literal["owner", "opponent"]


class FinishConsent(str, Enum):
    NONE = "none"
    OWNER_REQUESTED = "owner_requested"
    OPPONENT_REQUESTED = "opponent_requested"
    BOTH_REQUESTED = "both_requested"

    @classmethod
    def from_flags(cls, owner: bool, opponent: bool) -> "FinishConsent":
        if owner and opponent:
            return cls.BOTH_REQUESTED
        if owner:
            return cls.OWNER_REQUESTED
        if opponent:
            return cls.OPPONENT_REQUESTED
        return cls.NONE

    def requested_by(self, side: Side) -> bool:
        if self is FinishConsent.BOTH_REQUESTED:
            return True
        if side == "owner":
            return self is FinishConsent.OWNER_REQUESTED
        return self is FinishConsent.OPPONENT_REQUESTED

    def with_request(self, side: Side) -> "FinishConsent":
        other: Side = "opponent" if side == "owner" else "owner"
        if self.requested_by(other):
            return FinishConsent.BOTH_REQUESTED
        return (
            FinishConsent.OWNER_REQUESTED
            if side == "owner"
            else FinishConsent.OPPONENT_REQUESTED
        )

    def is_complete(self, *, has_opponent: bool) -> bool:
        if has_opponent:
            return self is FinishConsent.BOTH_REQUESTED
        return self.requested_by("owner")


@dataclass(frozen=True)
class _DisciplinePlan:
    owner: HabitReference
    challenger: HabitReference | None
    daily_goal: float


def _new_id() -> str:
    return str(uuid4())


def _side_of(challenge: Challenge, user_id: str) -> Side:
    return "owner" if user_id == challenge.owner_id else "opponent"


def _ensure_dates(start: datetime, end: datetime | None) -> None:
    if end is not None and end < start:
        raise ValidationError("The end date cannot be before the start date")


def _normalize_goal(daily_goal: float | None, *, owner_is_check: bool) -> float:
    if owner_is_check:
        return 1.0
    if daily_goal is None or not math.isfinite(daily_goal) or daily_goal <= 0:
        raise ValidationError("Each discipline needs a daily goal greater than zero")
    return float(daily_goal)


def _ensure_compatible(
    owner_shape: tuple[str, str], challenger_shape: tuple[str, str]
) -> None:
    owner_type, owner_unit = owner_shape
    challenger_type, challenger_unit = challenger_shape
    if is_check_habit_type(owner_type) != is_check_habit_type(challenger_type):
        raise ValidationError("Both habits must use the same kind of tracking")
    if owner_type != challenger_type or owner_unit != challenger_unit:
        raise ValidationError("Both habits must share type and unit to compete")


def _habit_shape(
    reference: HabitReference, rows: dict[str, dict[str, Any]]
) -> tuple[str, str]:
    if isinstance(reference, DraftHabit):
        return reference.draft.type, reference.draft.unit
    row = rows[reference.habit_id]
    return str(row.get("type") or ""), str(row.get("unit") or "")


async def _load_owned_habits(
    store: ChallengeStore, habit_ids: list[str], owner_id: str, *, label: str
) -> dict[str, dict[str, Any]]:
    unique = sorted(set(habit_ids))
    if not unique:
        return {}
    rows = await store.find_habits(unique, owner_id=owner_id)
    by_id = {str(row["id"]): row for row in rows if row.get("id")}
    if any(habit_id not in by_id for habit_id in unique):
        raise NotFoundError(
            f"Some {label} habits do not exist or do not belong to the {label}"
        )
    return by_id


async def _load_challenge(store: ChallengeStore, challenge_id: str) -> Challenge:
    challenge = await store.get_challenge(challenge_id)
    if challenge is None:
        raise NotFoundError("Challenge not found")
    return challenge


async def _save(
    store: ChallengeStore, previous: Challenge, updated: Challenge
) -> Challenge:
    saved = await store.update_challenge(updated, expected_version=previous.version)
    if saved is None:
        raise ConflictError("The challenge changed in the meantime, reload and try again")
    return saved


def _plan_discipline_references(
    discipline: DisciplineInput, challenge_type: str
) -> tuple[HabitReference, HabitReference | None]:
    owner_ref = resolve_habit_reference(
        discipline.owner_habit_id, discipline.owner_habit_draft, label="owner"
    )
    if owner_ref is None:
        raise ValidationError("Each discipline needs an owner habit, existing or new")

    if challenge_type == "personal":
        if discipline.challenger_habit_id or discipline.challenger_habit_draft:
            raise ValidationError("Personal challenges cannot include an opponent habit")
        return owner_ref, None

    challenger_ref = resolve_habit_reference(
        discipline.challenger_habit_id,
        discipline.challenger_habit_draft,
        label="opponent",
    )
    if challenger_ref is None:
        raise ValidationError(
            "Each friend discipline needs an opponent habit, existing or new"
        )
    return owner_ref, challenger_ref


async def create_challenge(
    store: ChallengeStore,
    owner_id: str,
    request: CreateChallengeRequest,
    *,
    now: datetime | None = None,
) -> Challenge:
    """Validate the whole request, then materialize owner drafts and insert.

    Friendship with the opponent is checked by the caller.
    """
    current = to_aware(now) if now is not None else utc_now()
    is_friend = request.type == "friend"

    opponent_id: str | None = None
    if is_friend:
        if not request.opponent_id:
            raise ValidationError("Choose the friend you want to challenge")
        if request.opponent_id == owner_id:
            raise ValidationError("You cannot challenge yourself")
        opponent_id = request.opponent_id
    elif request.opponent_id:
        raise ValidationError("Personal challenges cannot have an opponent")

    if not request.disciplines:
        raise ValidationError("At least one discipline is required")

    start = to_aware(request.start_date) if request.start_date else current
    end = to_aware(request.end_date) if request.end_date else None
    _ensure_dates(start, end)
    title = (request.title or "").strip()[: settings.challenge_title_max_length]

    references = [
        _plan_discipline_references(discipline, request.type)
        for discipline in request.disciplines
    ]
    owner_rows = await _load_owned_habits(
        store,
        [ref.habit_id for ref, _ in references if isinstance(ref, ExistingHabit)],
        owner_id,
        label="owner",
    )
    challenger_rows: dict[str, dict[str, Any]] = {}
    if opponent_id is not None:
        challenger_rows = await _load_owned_habits(
            store,
            [ref.habit_id for _, ref in references if isinstance(ref, ExistingHabit)],
            opponent_id,
            label="opponent",
        )

    plans: list[_DisciplinePlan] = []
    for discipline, (owner_ref, challenger_ref) in zip(
        request.disciplines, references, strict=True
    ):
        owner_shape = _habit_shape(owner_ref, owner_rows)
        goal = _normalize_goal(
            discipline.daily_goal, owner_is_check=is_check_habit_type(owner_shape[0])
        )
        if challenger_ref is not None:
            _ensure_compatible(owner_shape, _habit_shape(challenger_ref, challenger_rows))
        plans.append(
            _DisciplinePlan(owner=owner_ref, challenger=challenger_ref, daily_goal=goal)
        )

    # Everything is valid; habit creation must precede the challenge write.
    disciplines: list[Discipline] = []
    for plan in plans:
        if isinstance(plan.owner, DraftHabit):
            created = await materialize_habit_draft(store, owner_id, plan.owner.draft)
            owner_habit_id = str(created["id"])
        else:
            owner_habit_id = plan.owner.habit_id

        disciplines.append(
            Discipline(
                id=_new_id(),
                type=request.type,
                owner_id=owner_id,
                challenger_id=opponent_id,
                owner_habit_id=owner_habit_id,
                challenger_habit_id=(
                    plan.challenger.habit_id
                    if isinstance(plan.challenger, ExistingHabit)
                    else None
                ),
                pending_challenger_habit=(
                    plan.challenger.draft
                    if isinstance(plan.challenger, DraftHabit)
                    else None
                ),
                daily_goal=plan.daily_goal,
            )
        )

    challenge = Challenge(
        id=_new_id(),
        title=title,
        type=request.type,
        status="pending" if is_friend else "active",
        owner_id=owner_id,
        opponent_id=opponent_id,
        initiator_id=owner_id,
        awaiting_user_id=opponent_id,
        start_date=start,
        end_date=end,
        disciplines=disciplines,
        version=0,
        created_at=current,
    )
    saved = await store.insert_challenge(challenge)
    logger.info(
        "challenge created id=%s type=%s disciplines=%d",
        saved.id,
        saved.type,
        len(saved.disciplines),
    )
    return saved


async def _accept(
    store: ChallengeStore, challenge: Challenge
) -> Challenge:
    opponent_id = challenge.opponent_id
    if opponent_id is None:
        raise ConflictError("The challenge has no opponent")

    disciplines: list[Discipline] = []
    for discipline in challenge.disciplines:
        if discipline.challenger_habit_id or discipline.pending_challenger_habit is None:
            disciplines.append(discipline)
            continue
        habit = await materialize_habit_draft(
            store, opponent_id, discipline.pending_challenger_habit
        )
        disciplines.append(
            discipline.model_copy(
                update={
                    "challenger_habit_id": str(habit["id"]),
                    "pending_challenger_habit": None,
                }
            )
        )

    return challenge.model_copy(
        update={"disciplines": disciplines, "status": "active", "awaiting_user_id": None}
    )


async def _modify(
    store: ChallengeStore,
    challenge: Challenge,
    user_id: str,
    request: RespondChallengeRequest,
) -> Challenge:
    proposals = request.disciplines or []
    if not proposals:
        raise ValidationError("Propose at least one discipline to modify the challenge")
    for proposal in proposals:
        if proposal.owner_habit_draft is not None or proposal.challenger_habit_draft is not None:
            raise ValidationError("New habits cannot be proposed in a counter-offer")
        if not proposal.owner_habit_id or not proposal.challenger_habit_id:
            raise ValidationError("Each discipline must include both habits")

    start = to_aware(request.start_date) if request.start_date else challenge.start_date
    if "end_date" in request.model_fields_set:
        end = to_aware(request.end_date) if request.end_date else None
    else:
        end = challenge.end_date
    _ensure_dates(to_aware(start), to_aware(end) if end is not None else None)

    opponent_id = challenge.opponent_id or ""
    owner_rows = await _load_owned_habits(
        store,
        [p.owner_habit_id for p in proposals if p.owner_habit_id],
        challenge.owner_id,
        label="owner",
    )
    challenger_rows = await _load_owned_habits(
        store,
        [p.challenger_habit_id for p in proposals if p.challenger_habit_id],
        opponent_id,
        label="opponent",
    )

    disciplines: list[Discipline] = []
    for proposal in proposals:
        owner_ref = ExistingHabit(habit_id=proposal.owner_habit_id or "")
        challenger_ref = ExistingHabit(habit_id=proposal.challenger_habit_id or "")
        owner_shape = _habit_shape(owner_ref, owner_rows)
        _ensure_compatible(owner_shape, _habit_shape(challenger_ref, challenger_rows))
        disciplines.append(
            Discipline(
                id=_new_id(),
                type="friend",
                owner_id=challenge.owner_id,
                challenger_id=opponent_id,
                owner_habit_id=owner_ref.habit_id,
                challenger_habit_id=challenger_ref.habit_id,
                daily_goal=_normalize_goal(
                    proposal.daily_goal,
                    owner_is_check=is_check_habit_type(owner_shape[0]),
                ),
            )
        )

    return challenge.model_copy(
        update={
            "disciplines": disciplines,
            "start_date": start,
            "end_date": end,
            "initiator_id": user_id,
            "awaiting_user_id": challenge.counterpart_of(user_id),
            "status": "pending",
        }
    )


async def respond_to_challenge(
    store: ChallengeStore,
    challenge_id: str,
    user_id: str,
    request: RespondChallengeRequest,
) -> Challenge:
    challenge = await _load_challenge(store, challenge_id)
    if not challenge.is_participant(user_id):
        raise ForbiddenError("You are not allowed to answer this challenge")
    if challenge.status != "pending":
        raise ConflictError("Only pending challenges can be answered")
    if challenge.type != "friend":
        raise ConflictError("Only friend challenges can be answered")
    if challenge.awaiting_user_id != user_id:
        raise ForbiddenError("The challenge is waiting for the other participant")

    if request.action == "accept":
        updated = await _accept(store, challenge)
    elif request.action == "reject":
        updated = challenge.model_copy(
            update={"status": "rejected", "awaiting_user_id": None}
        )
    else:
        updated = await _modify(store, challenge, user_id, request)

    saved = await _save(store, challenge, updated)
    logger.info(
        "challenge answered id=%s action=%s status=%s",
        saved.id,
        request.action,
        saved.status,
    )
    return saved


async def request_finish(
    store: ChallengeStore,
    challenge_id: str,
    user_id: str,
    *,
    now: datetime | None = None,
) -> Challenge:
    current = to_aware(now) if now is not None else utc_now()
    challenge = await _load_challenge(store, challenge_id)
    if not challenge.is_participant(user_id):
        raise ForbiddenError("You are not allowed to finish this challenge")
    if challenge.status not in ("active", "pending_finish"):
        raise ValidationError("Only active challenges can be finished")

    consent = FinishConsent.from_flags(
        challenge.owner_wants_to_finish, challenge.opponent_wants_to_finish
    ).with_request(_side_of(challenge, user_id))

    update: dict[str, Any] = {
        "owner_wants_to_finish": consent.requested_by("owner"),
        "opponent_wants_to_finish": consent.requested_by("opponent"),
    }
    if consent.is_complete(has_opponent=challenge.opponent_id is not None):
        end = challenge.end_date
        if end is None or to_aware(end) > current:
            # Never end before the start of a challenge that has not begun.
            end = max(current, to_aware(challenge.start_date))
        update.update(status="finished", end_date=end)
    else:
        update["status"] = "pending_finish"

    updated = challenge.model_copy(update=update)
    if updated == challenge:
        return challenge

    saved = await _save(store, challenge, updated)
    logger.info("challenge finish requested id=%s status=%s", saved.id, saved.status)
    return saved


async def decline_finish(
    store: ChallengeStore, challenge_id: str, user_id: str
) -> Challenge:
    challenge = await _load_challenge(store, challenge_id)
    if not challenge.is_participant(user_id):
        raise ForbiddenError("You are not allowed to manage this challenge")
    if challenge.status != "pending_finish":
        raise ValidationError("There is no pending finish request")

    side = _side_of(challenge, user_id)
    other: Side = "opponent" if side == "owner" else "owner"
    consent = FinishConsent.from_flags(
        challenge.owner_wants_to_finish, challenge.opponent_wants_to_finish
    )
    if consent.requested_by(side):
        raise ValidationError("You already asked to finish this challenge")
    if not consent.requested_by(other):
        raise ValidationError("There is no finish request you can decline")

    updated = challenge.model_copy(
        update={
            "owner_wants_to_finish": False,
            "opponent_wants_to_finish": False,
            "status": "active",
        }
    )
    saved = await _save(store, challenge, updated)
    logger.info("challenge finish declined id=%s", saved.id)
    return saved


async def delete_challenge(
    store: ChallengeStore, challenge_id: str, user_id: str
) -> None:
    challenge = await _load_challenge(store, challenge_id)
    if not challenge.is_participant(user_id):
        raise ForbiddenError("You are not allowed to delete this challenge")
    # Disciplines live inside the challenge row and go with it.
    await store.delete_challenge(challenge.id)
    logger.info("challenge deleted id=%s by=%s", challenge.id, user_id)


async def list_challenges(
    store: ChallengeStore, user_id: str, *, status: ChallengeStatus | None = None
) -> list[Challenge]:
    return await store.list_challenges(user_id, status=status)
