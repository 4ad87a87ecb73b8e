from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from habitduel.core.config import settings
from habitduel.schemas.challenges import Challenge, HabitDraft

HABIT_FIELDS = "id,user_id,name,type,unit,category,emoji,color,description"


class ChallengeStore(Protocol):
    """Persistence collaborator consumed by the challenge engine.

    Habit and log rows are plain dicts as returned by the database; challenges
    are validated ``Challenge`` aggregates with their disciplines embedded.
    """

    async def find_habits(
        self, habit_ids: Sequence[str], *, owner_id: str | None = None
    ) -> list[dict[str, Any]]: ...

    async def create_habit(self, owner_id: str, draft: HabitDraft) -> dict[str, Any]: ...

    async def find_logs(
        self, *, user_id: str, habit_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]: ...

    async def get_challenge(self, challenge_id: str) -> Challenge | None: ...

    async def list_challenges(
        self, user_id: str, *, status: str | None = None
    ) -> list[Challenge]: ...

    async def insert_challenge(self, challenge: Challenge) -> Challenge: ...

    async def update_challenge(
        self, challenge: Challenge, *, expected_version: int
    ) -> Challenge | None: ...

    async def delete_challenge(self, challenge_id: str) -> None: ...

    async def find_participants(
        self, user_ids: Sequence[str]
    ) -> dict[str, dict[str, Any]]: ...

    async def is_friend(self, user_id: str, candidate_id: str) -> bool: ...


def _in_filter(values: Sequence[str]) -> str:
    return "in.(" + ",".join(values) + ")"


class SupabaseChallengeStore:
    """ChallengeStore over the Supabase REST API.

    Runs with the service-role key: participant checks are enforced by the
    engine, and it must read and write habits and logs of both participants.
    """

    def __init__(self, sb: Any, *, bearer_token: str):
        self._sb = sb
        self._token = bearer_token

    async def find_habits(
        self, habit_ids: Sequence[str], *, owner_id: str | None = None
    ) -> list[dict[str, Any]]:
        ids = sorted({h for h in habit_ids if h})
        if not ids:
            return []
        params: dict[str, Any] = {"select": HABIT_FIELDS, "id": _in_filter(ids)}
        if owner_id is not None:
            params["user_id"] = f"eq.{owner_id}"
        return await self._sb.select("habits", bearer_token=self._token, params=params)

    async def create_habit(self, owner_id: str, draft: HabitDraft) -> dict[str, Any]:
        # A habit row keyed by user_id is what puts it in that user's habit list.
        row = {"user_id": owner_id, **draft.model_dump(exclude_none=True)}
        return await self._sb.insert_one("habits", bearer_token=self._token, row=row)

    async def find_logs(
        self, *, user_id: str, habit_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        return await self._sb.select(
            "habit_logs",
            bearer_token=self._token,
            params={
                "select": "date,value",
                "user_id": f"eq.{user_id}",
                "habit_id": f"eq.{habit_id}",
                "and": f"(date.gte.{start.isoformat()},date.lte.{end.isoformat()})",
                "order": "date.asc",
            },
        )

    async def get_challenge(self, challenge_id: str) -> Challenge | None:
        rows = await self._sb.select(
            "challenges",
            bearer_token=self._token,
            params={"select": "*", "id": f"eq.{challenge_id}", "limit": 1},
        )
        if not rows:
            return None
        return Challenge.model_validate(rows[0])

    async def list_challenges(
        self, user_id: str, *, status: str | None = None
    ) -> list[Challenge]:
        params: dict[str, Any] = {
            "select": "*",
            "or": f"(owner_id.eq.{user_id},opponent_id.eq.{user_id})",
            "order": "created_at.desc",
            "limit": settings.challenge_list_limit,
        }
        if status:
            params["status"] = f"eq.{status}"
        rows = await self._sb.select("challenges", bearer_token=self._token, params=params)
        return [Challenge.model_validate(row) for row in rows]

    async def insert_challenge(self, challenge: Challenge) -> Challenge:
        row = challenge.model_dump(mode="json", exclude={"created_at"})
        saved = await self._sb.insert_one("challenges", bearer_token=self._token, row=row)
        return Challenge.model_validate(saved or row)

    async def update_challenge(
        self, challenge: Challenge, *, expected_version: int
    ) -> Challenge | None:
        payload = challenge.model_dump(mode="json", exclude={"id", "created_at"})
        payload["version"] = expected_version + 1
        updated = await self._sb.patch(
            "challenges",
            bearer_token=self._token,
            params={"id": f"eq.{challenge.id}", "version": f"eq.{expected_version}"},
            payload=payload,
        )
        # Zero rows means another writer bumped the version first.
        if not updated:
            return None
        return Challenge.model_validate(updated[0])

    async def delete_challenge(self, challenge_id: str) -> None:
        await self._sb.delete(
            "challenges",
            bearer_token=self._token,
            params={"id": f"eq.{challenge_id}"},
        )

    async def find_participants(
        self, user_ids: Sequence[str]
    ) -> dict[str, dict[str, Any]]:
        ids = sorted({u for u in user_ids if u})
        if not ids:
            return {}
        rows = await self._sb.select(
            "profiles",
            bearer_token=self._token,
            params={"select": "id,username,avatar_url", "id": _in_filter(ids)},
        )
        return {str(row.get("id")): row for row in rows if row.get("id")}

    async def is_friend(self, user_id: str, candidate_id: str) -> bool:
        # One row per pair; either side may have sent the request.
        rows = await self._sb.select(
            "friendships",
            bearer_token=self._token,
            params={
                "select": "user_id",
                "or": (
                    f"(and(user_id.eq.{user_id},friend_id.eq.{candidate_id}),"
                    f"and(user_id.eq.{candidate_id},friend_id.eq.{user_id}))"
                ),
                "status": "eq.accepted",
                "limit": 1,
            },
        )
        return bool(rows)
