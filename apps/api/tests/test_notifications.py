from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

import habitduel.services.error_log as error_log
from habitduel.schemas.challenges import ChallengeSummary, Participant
from habitduel.services.notifications import (
    MESSAGE_MAX,
    TITLE_MAX,
    Notification,
    Notifier,
    challenge_invite,
    finish_notifications,
)
from habitduel.services.privacy import redact_secrets_text, sanitize_for_log
from habitduel.services.supabase_rest import SupabaseRest, SupabaseRestError
from tests.fixtures.challenges import NOW, OPPONENT_ID, OWNER_ID, at


def _summary(**overrides) -> ChallengeSummary:
    data = {
        "id": "challenge-1",
        "title": "May duel",
        "type": "friend",
        "status": "pending",
        "owner_id": OWNER_ID,
        "opponent_id": OPPONENT_ID,
        "start_date": at(1),
        "initiator_id": OWNER_ID,
        "owner_wins": 0,
        "opponent_wins": 0,
        "draws": 0,
        "duration_days": 10,
        "owner": Participant(id=OWNER_ID, username="alice"),
        "opponent": Participant(id=OPPONENT_ID, username="bob"),
        "owner_requested_finish": False,
        "opponent_requested_finish": False,
    }
    data.update(overrides)
    return ChallengeSummary(**data)


def test_invite_goes_to_opponent() -> None:
    invite = challenge_invite(_summary())
    assert invite is not None
    assert invite.user_id == OPPONENT_ID
    assert invite.message == "alice challenged you May duel."


def test_no_invite_for_personal_challenge() -> None:
    assert challenge_invite(_summary(type="personal", opponent_id=None, opponent=None)) is None


def test_finish_request_goes_to_the_other_side() -> None:
    [note] = finish_notifications(
        _summary(status="pending_finish", opponent_requested_finish=True), OPPONENT_ID, now=NOW
    )
    assert note.type == "challenge_finish_request"
    assert note.user_id == OWNER_ID
    assert "bob" in note.message


def test_finished_challenge_notifies_everyone_with_score() -> None:
    notes = finish_notifications(
        _summary(
            status="finished",
            owner_wins=3,
            opponent_wins=1,
            draws=2,
            overall_winner="owner",
            end_date=at(9),
        ),
        OWNER_ID,
        now=NOW,
    )
    assert [n.user_id for n in notes] == [OWNER_ID, OPPONENT_ID]
    assert notes[0].message == "Final score 3-1 (2 draws)"
    assert notes[0].metadata["finished_at"] == at(9).isoformat()
    assert notes[0].metadata["overall_winner"] == "owner"


def test_active_challenge_needs_no_notification() -> None:
    assert finish_notifications(_summary(status="active"), OWNER_ID, now=NOW) == []


def test_row_clamps_title_and_message() -> None:
    row = Notification(
        user_id=OWNER_ID,
        type="challenge_invite",
        title="t" * 500,
        message="m" * 500,
    ).to_row()
    assert len(row["title"]) == TITLE_MAX
    assert len(row["message"]) == MESSAGE_MAX
    assert row["read_at"] is None


@pytest.mark.asyncio
async def test_notifier_swallows_delivery_failures() -> None:
    sb = AsyncMock()
    sb.insert_one = AsyncMock(side_effect=SupabaseRestError(status_code=500, message="boom"))
    notifier = Notifier(sb, bearer_token="service")

    await notifier.send(challenge_invite(_summary()))

    sb.insert_one.assert_awaited_once()
    assert sb.insert_one.await_args.args[0] == "notifications"


def test_redacts_tokens_and_contact_details() -> None:
    text = "Bearer abc.def-ghi failed for alice@example.com?apikey=secret123"
    cleaned = sanitize_for_log(text)
    assert "abc.def-ghi" not in cleaned
    assert "alice@example.com" not in cleaned
    assert "secret123" not in cleaned
    assert redact_secrets_text("") == ""


@pytest.mark.asyncio
async def test_log_system_error_never_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    insert = AsyncMock(side_effect=RuntimeError("db down"))
    monkeypatch.setattr(SupabaseRest, "insert_one", insert)

    await error_log.log_system_error(
        route="/api/challenges", message="boom", err=ValueError("bad")
    )

    row = insert.await_args.kwargs["row"]
    assert row["route"] == "/api/challenges"
    assert "ValueError" in row["stack"]
