from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

import habitduel.main as main_module
from habitduel.main import app
from habitduel.routes.challenges import get_notifier
from habitduel.services.notifications import Notifier
from habitduel.services.supabase_rest import SupabaseRestError
from tests.fixtures.challenges import (
    OPPONENT_ID,
    OUTSIDER_ID,
    OWNER_ID,
    at,
    make_challenge,
)
from tests.fixtures.memory_store import MemoryChallengeStore, RecordingNotifier


@pytest.fixture
def store(memory_store: MemoryChallengeStore) -> MemoryChallengeStore:
    memory_store.add_habit(OWNER_ID, "habit-owner")
    memory_store.add_habit(OPPONENT_ID, "habit-opponent")
    return memory_store


def _create_body(**overrides) -> dict:
    body = {
        "type": "friend",
        "opponent_id": OPPONENT_ID,
        "title": "Reading duel",
        "disciplines": [
            {
                "owner_habit_id": "habit-owner",
                "challenger_habit_id": "habit-opponent",
                "daily_goal": 10,
            }
        ],
    }
    body.update(overrides)
    return body


def test_challenges_require_auth(client: TestClient) -> None:
    res = client.get("/api/challenges")
    assert res.status_code == 401


def test_create_friend_challenge_notifies_opponent(
    api_client: TestClient, store: MemoryChallengeStore, notifier: RecordingNotifier
) -> None:
    res = api_client.post("/api/challenges", json=_create_body())

    assert res.status_code == 201
    body = res.json()
    assert body["viewer_id"] == OWNER_ID
    challenge = body["challenge"]
    assert challenge["status"] == "pending"
    assert challenge["awaiting_user_id"] == OPPONENT_ID
    assert challenge["owner"]["username"] == "alice"
    assert len(store.challenges) == 1

    [invite] = notifier.sent
    assert invite.type == "challenge_invite"
    assert invite.user_id == OPPONENT_ID
    assert "alice" in invite.message
    assert invite.metadata == {"challenge_id": challenge["id"]}


def test_create_succeeds_when_notification_write_breaks(
    api_client: TestClient, store: MemoryChallengeStore
) -> None:
    sb = AsyncMock()
    sb.insert_one = AsyncMock(side_effect=ValueError("response was not JSON"))
    app.dependency_overrides[get_notifier] = lambda: Notifier(sb, bearer_token="service")

    res = api_client.post("/api/challenges", json=_create_body())

    assert res.status_code == 201
    assert len(store.challenges) == 1
    sb.insert_one.assert_awaited_once()


def test_friendship_counts_in_both_directions(
    api_client: TestClient, login_as, store: MemoryChallengeStore
) -> None:
    login_as(OPPONENT_ID)
    body = _create_body(
        opponent_id=OWNER_ID,
        disciplines=[
            {
                "owner_habit_id": "habit-opponent",
                "challenger_habit_id": "habit-owner",
                "daily_goal": 5,
            }
        ],
    )

    res = api_client.post("/api/challenges", json=body)

    assert res.status_code == 201
    assert res.json()["challenge"]["owner_id"] == OPPONENT_ID


def test_create_rejects_non_friend(
    api_client: TestClient, store: MemoryChallengeStore, notifier: RecordingNotifier
) -> None:
    res = api_client.post("/api/challenges", json=_create_body(opponent_id=OUTSIDER_ID))

    assert res.status_code == 403
    assert res.json()["detail"]["code"] == "forbidden"
    assert store.challenges == {}
    assert notifier.sent == []


def test_create_rejects_self_challenge(api_client: TestClient) -> None:
    res = api_client.post("/api/challenges", json=_create_body(opponent_id=OWNER_ID))
    assert res.status_code == 403


def test_create_validation_error_maps_to_422(api_client: TestClient) -> None:
    body = _create_body(
        disciplines=[
            {
                "owner_habit_id": "habit-owner",
                "owner_habit_draft": {"name": "Run", "type": "number", "unit": "km"},
                "challenger_habit_id": "habit-opponent",
                "daily_goal": 3,
            }
        ]
    )
    res = api_client.post("/api/challenges", json=body)

    assert res.status_code == 422
    detail = res.json()["detail"]
    assert detail["code"] == "validation_error"
    assert "not both" in detail["message"]


def test_create_rejects_unknown_fields(api_client: TestClient) -> None:
    res = api_client.post("/api/challenges", json=_create_body(stakes="pizza"))
    assert res.status_code == 422


def test_list_returns_summaries_and_ignores_unknown_status(
    api_client: TestClient, store: MemoryChallengeStore
) -> None:
    store.put_challenge(make_challenge(id="a", created_at=at(1)))
    store.put_challenge(make_challenge(id="b", status="finished", created_at=at(2)))

    res = api_client.get("/api/challenges", params={"status": "bogus"})
    assert res.status_code == 200
    body = res.json()
    assert body["viewer_id"] == OWNER_ID
    assert [c["id"] for c in body["challenges"]] == ["b", "a"]

    res = api_client.get("/api/challenges", params={"status": "finished"})
    assert [c["id"] for c in res.json()["challenges"]] == ["b"]


def test_get_challenge_for_outsider_is_forbidden(
    api_client: TestClient, login_as, store: MemoryChallengeStore
) -> None:
    store.put_challenge(make_challenge())
    login_as(OUTSIDER_ID)

    res = api_client.get("/api/challenges/challenge-1")
    assert res.status_code == 403


def test_get_unknown_challenge_is_404(api_client: TestClient) -> None:
    res = api_client.get("/api/challenges/nope")
    assert res.status_code == 404
    assert res.json()["detail"] == {"message": "Challenge not found", "code": "not_found"}


def test_respond_after_reject_conflicts(
    api_client: TestClient, login_as, store: MemoryChallengeStore
) -> None:
    store.put_challenge(make_challenge(status="pending", awaiting_user_id=OPPONENT_ID))
    login_as(OPPONENT_ID)

    res = api_client.post("/api/challenges/challenge-1/respond", json={"action": "reject"})
    assert res.status_code == 200
    assert res.json()["challenge"]["status"] == "rejected"

    res = api_client.post("/api/challenges/challenge-1/respond", json={"action": "accept"})
    assert res.status_code == 409


def test_respond_rejects_unknown_action(api_client: TestClient, store: MemoryChallengeStore) -> None:
    store.put_challenge(make_challenge(status="pending", awaiting_user_id=OPPONENT_ID))
    res = api_client.post("/api/challenges/challenge-1/respond", json={"action": "maybe"})
    assert res.status_code == 422


def test_finish_flow_sends_request_then_final_score(
    api_client: TestClient,
    login_as,
    store: MemoryChallengeStore,
    notifier: RecordingNotifier,
) -> None:
    store.put_challenge(make_challenge())

    res = api_client.post("/api/challenges/challenge-1/finish")
    assert res.status_code == 200
    assert res.json()["challenge"]["status"] == "pending_finish"
    [request] = notifier.sent
    assert request.type == "challenge_finish_request"
    assert request.user_id == OPPONENT_ID

    login_as(OPPONENT_ID)
    res = api_client.post("/api/challenges/challenge-1/finish")
    assert res.status_code == 200
    challenge = res.json()["challenge"]
    assert challenge["status"] == "finished"
    assert challenge["end_date"] is not None

    finished = [n for n in notifier.sent if n.type == "challenge_finished"]
    assert sorted(n.user_id for n in finished) == sorted([OWNER_ID, OPPONENT_ID])
    assert set(finished[0].metadata) == {
        "challenge_id",
        "owner_wins",
        "opponent_wins",
        "draws",
        "overall_winner",
        "finished_at",
    }


def test_decline_finish(api_client: TestClient, login_as, store: MemoryChallengeStore) -> None:
    store.put_challenge(make_challenge(status="pending_finish", owner_wants_to_finish=True))
    login_as(OPPONENT_ID)

    res = api_client.post("/api/challenges/challenge-1/finish/decline")
    assert res.status_code == 200
    challenge = res.json()["challenge"]
    assert challenge["status"] == "active"
    assert challenge["owner_requested_finish"] is False


def test_delete_challenge(api_client: TestClient, store: MemoryChallengeStore) -> None:
    store.put_challenge(make_challenge())

    res = api_client.delete("/api/challenges/challenge-1")
    assert res.status_code == 204
    assert store.challenges == {}


def test_supabase_errors_are_normalized(
    api_client: TestClient,
    store: MemoryChallengeStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    log_mock = AsyncMock()
    monkeypatch.setattr(main_module, "log_system_error", log_mock)
    store.list_challenges = AsyncMock(  # type: ignore[method-assign]
        side_effect=SupabaseRestError(status_code=503, message="upstream down", code="XX000")
    )

    res = api_client.get("/api/challenges")

    assert res.status_code == 502
    assert res.json()["detail"]["code"] == "XX000"
    assert log_mock.await_count >= 1


def test_health(client: TestClient) -> None:
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True}
