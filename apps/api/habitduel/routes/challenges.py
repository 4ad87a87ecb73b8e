from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from habitduel.core.config import settings
from habitduel.core.security import AuthDep
from habitduel.schemas.challenges import (
    CHALLENGE_STATUSES,
    Challenge,
    ChallengeEnvelope,
    ChallengeListResponse,
    CreateChallengeRequest,
    RespondChallengeRequest,
)
from habitduel.services.challenge_lifecycle import (
    create_challenge,
    decline_finish,
    delete_challenge,
    list_challenges,
    request_finish,
    respond_to_challenge,
)
from habitduel.services.challenge_store import ChallengeStore, SupabaseChallengeStore
from habitduel.services.challenge_summary import (
    get_challenge_summary,
    summarize_challenge,
)
from habitduel.services.errors import ForbiddenError
from habitduel.services.notifications import (
    Notifier,
    challenge_invite,
    finish_notifications,
)
from habitduel.services.supabase_rest import SupabaseRest
from habitduel.services.time_window import utc_now

router = APIRouter()


def _service_rest() -> SupabaseRest:
    # Challenges span two users' habits and logs; access is checked in the engine.
    return SupabaseRest(str(settings.supabase_url), settings.supabase_service_role_key)


def get_challenge_store() -> ChallengeStore:
    return SupabaseChallengeStore(
        _service_rest(), bearer_token=settings.supabase_service_role_key
    )


def get_notifier() -> Notifier:
    return Notifier(_service_rest(), bearer_token=settings.supabase_service_role_key)


StoreDep = Annotated[ChallengeStore, Depends(get_challenge_store)]
NotifierDep = Annotated[Notifier, Depends(get_notifier)]


async def _envelope(
    store: ChallengeStore, challenge: Challenge, viewer_id: str
) -> ChallengeEnvelope:
    summary = await summarize_challenge(
        store, challenge, viewer_id, now=utc_now(), tz=settings.challenge_tz()
    )
    return ChallengeEnvelope(viewer_id=viewer_id, challenge=summary)


@router.get("/challenges", response_model=ChallengeListResponse)
async def list_my_challenges(
    auth: AuthDep,
    store: StoreDep,
    status_filter: str | None = Query(default=None, alias="status"),
) -> ChallengeListResponse:
    # Unknown filters fall back to the full list.
    wanted = status_filter if status_filter in CHALLENGE_STATUSES else None
    challenges = await list_challenges(store, auth.user_id, status=wanted)

    now = utc_now()
    tz = settings.challenge_tz()
    summaries = [
        await summarize_challenge(store, challenge, auth.user_id, now=now, tz=tz)
        for challenge in challenges
    ]
    return ChallengeListResponse(viewer_id=auth.user_id, challenges=summaries)


@router.get("/challenges/{challenge_id}", response_model=ChallengeEnvelope)
async def get_challenge(
    challenge_id: str, auth: AuthDep, store: StoreDep
) -> ChallengeEnvelope:
    summary = await get_challenge_summary(store, challenge_id, auth.user_id)
    return ChallengeEnvelope(viewer_id=auth.user_id, challenge=summary)


@router.post(
    "/challenges",
    response_model=ChallengeEnvelope,
    status_code=status.HTTP_201_CREATED,
)
async def create_my_challenge(
    body: CreateChallengeRequest,
    auth: AuthDep,
    store: StoreDep,
    notifier: NotifierDep,
) -> ChallengeEnvelope:
    if body.type == "friend" and body.opponent_id:
        if body.opponent_id == auth.user_id:
            raise ForbiddenError("You cannot challenge yourself")
        if not await store.is_friend(auth.user_id, body.opponent_id):
            raise ForbiddenError("You can only challenge your friends")

    challenge = await create_challenge(store, auth.user_id, body)
    envelope = await _envelope(store, challenge, auth.user_id)
    await notifier.send(challenge_invite(envelope.challenge))
    return envelope


@router.post("/challenges/{challenge_id}/respond", response_model=ChallengeEnvelope)
async def respond_challenge(
    challenge_id: str,
    body: RespondChallengeRequest,
    auth: AuthDep,
    store: StoreDep,
) -> ChallengeEnvelope:
    challenge = await respond_to_challenge(store, challenge_id, auth.user_id, body)
    return await _envelope(store, challenge, auth.user_id)


@router.post("/challenges/{challenge_id}/finish", response_model=ChallengeEnvelope)
async def finish_challenge(
    challenge_id: str,
    auth: AuthDep,
    store: StoreDep,
    notifier: NotifierDep,
) -> ChallengeEnvelope:
    now = utc_now()
    challenge = await request_finish(store, challenge_id, auth.user_id, now=now)
    envelope = await _envelope(store, challenge, auth.user_id)
    await notifier.send_all(
        finish_notifications(envelope.challenge, auth.user_id, now=now)
    )
    return envelope


@router.post(
    "/challenges/{challenge_id}/finish/decline", response_model=ChallengeEnvelope
)
async def decline_challenge_finish(
    challenge_id: str, auth: AuthDep, store: StoreDep
) -> ChallengeEnvelope:
    challenge = await decline_finish(store, challenge_id, auth.user_id)
    return await _envelope(store, challenge, auth.user_id)


@router.delete(
    "/challenges/{challenge_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_challenge(
    challenge_id: str, auth: AuthDep, store: StoreDep
) -> Response:
    await delete_challenge(store, challenge_id, auth.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
