from __future__ import annotations

from datetime import datetime
from typing import Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

ChallengeType = Literal["personal", "friend"]
ChallengeStatus = Literal[
    "pending",
    "active",
    "pending_finish",
    "finished",
    "rejected",
    "cancelled",
]
RespondAction = Literal["accept", "reject", "modify"]
DisciplineWinner = Literal["owner", "challenger", "draw"]
OverallWinner = Literal["owner", "opponent", "draw"]

HabitCategory = Literal[
    "fitness",
    "study",
    "health",
    "personal",
    "work",
    "creativity",
    "spirituality",
    "home",
]
HabitColor = Literal[
    "zinc",
    "emerald",
    "sky",
    "amber",
    "violet",
    "rose",
    "teal",
    "indigo",
    "lime",
    "orange",
]

CHALLENGE_STATUSES: tuple[str, ...] = get_args(ChallengeStatus)
HABIT_CATEGORIES: tuple[str, ...] = get_args(HabitCategory)
HABIT_COLORS: tuple[str, ...] = get_args(HabitColor)


# ── Requests ─────────────────────────────────────────────────────────────────


class HabitDraftInput(BaseModel):
    """Raw inline habit payload; normalized by services.habit_drafts."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    type: str | None = None
    unit: str | None = None
    category: str | None = None
    color: str | None = None
    emoji: str | None = None
    description: str | None = None


class DisciplineInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner_habit_id: str | None = None
    owner_habit_draft: HabitDraftInput | None = None
    challenger_habit_id: str | None = None
    challenger_habit_draft: HabitDraftInput | None = None
    daily_goal: float | None = None

    @field_validator("owner_habit_id", "challenger_habit_id")
    @classmethod
    def blank_id_is_missing(cls, value: str | None) -> str | None:
        if value is None:
            return None
        text = value.strip()
        return text or None


class CreateChallengeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: ChallengeType = "friend"
    opponent_id: str | None = None
    title: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    disciplines: list[DisciplineInput] = Field(default_factory=list, max_length=20)


class RespondChallengeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: RespondAction
    disciplines: list[DisciplineInput] | None = Field(default=None, max_length=20)
    start_date: datetime | None = None
    # Explicit null clears the end date; omitting the field keeps it.
    end_date: datetime | None = None


# ── Stored aggregate ─────────────────────────────────────────────────────────


class HabitDraft(BaseModel):
    """Normalized habit specification that has not been saved as a habit yet."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=80)
    type: str = Field(min_length=1)
    unit: str = Field(min_length=1, max_length=40)
    category: HabitCategory = "personal"
    color: HabitColor = "zinc"
    emoji: str = Field(default="", max_length=4)
    description: str | None = Field(default=None, max_length=280)


class Discipline(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: ChallengeType
    owner_id: str
    challenger_id: str | None = None
    owner_habit_id: str
    challenger_habit_id: str | None = None
    pending_challenger_habit: HabitDraft | None = None
    daily_goal: float


class Challenge(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    type: ChallengeType
    status: ChallengeStatus
    owner_id: str
    opponent_id: str | None = None
    initiator_id: str
    awaiting_user_id: str | None = None
    start_date: datetime
    end_date: datetime | None = None
    owner_wants_to_finish: bool = False
    opponent_wants_to_finish: bool = False
    disciplines: list[Discipline] = Field(default_factory=list)
    version: int = 0
    created_at: datetime | None = None

    def is_participant(self, user_id: str) -> bool:
        return user_id == self.owner_id or (
            self.opponent_id is not None and user_id == self.opponent_id
        )

    def counterpart_of(self, user_id: str) -> str | None:
        if user_id == self.owner_id:
            return self.opponent_id
        return self.owner_id


# ── Summary DTO ──────────────────────────────────────────────────────────────


class HabitMeta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    type: str
    unit: str
    emoji: str = ""
    color: str = "zinc"
    category: str | None = None


class Participant(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    username: str
    avatar: str = ""


class DisciplineProgressSide(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    habit_id: str
    total: float
    daily_goal: float
    target_total: float
    completion_ratio: float
    today_total: float
    today_completion_ratio: float
    habit: HabitMeta | None = None


class DisciplineProgressSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    type: ChallengeType
    owner: DisciplineProgressSide
    challenger: DisciplineProgressSide | None = None
    winner: DisciplineWinner | None = None
    duration_days: int
    owner_score: int
    opponent_score: int
    draws: int
    pending_challenger_habit: HabitDraft | None = None


class ChallengeSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    type: ChallengeType
    status: ChallengeStatus
    owner_id: str
    opponent_id: str | None = None
    start_date: datetime
    end_date: datetime | None = None
    awaiting_user_id: str | None = None
    initiator_id: str
    disciplines: list[DisciplineProgressSummary] = Field(default_factory=list)
    owner_wins: int
    opponent_wins: int
    draws: int
    overall_winner: OverallWinner | None = None
    duration_days: int
    owner: Participant | None = None
    opponent: Participant | None = None
    owner_requested_finish: bool
    opponent_requested_finish: bool


class ChallengeEnvelope(BaseModel):
    model_config = ConfigDict(extra="forbid")

    viewer_id: str
    challenge: ChallengeSummary


class ChallengeListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    viewer_id: str
    challenges: list[ChallengeSummary] = Field(default_factory=list)
