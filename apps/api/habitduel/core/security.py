from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from habitduel.services.supabase_auth import get_current_user


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    access_token: str


def _unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def bearer_token_from(request: Request) -> str | None:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        return None
    token = auth.split(" ", 1)[1].strip()
    if not token or " " in token or len(token) < 20:
        return None
    return token


async def get_auth_context(request: Request) -> AuthContext:
    token = bearer_token_from(request)
    if token is None:
        raise _unauthorized("Missing token")

    try:
        user = await get_current_user(access_token=token, use_cache=True)
    except Exception:
        # Invalid, expired or unverifiable tokens all look the same to clients.
        raise _unauthorized()

    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id.strip():
        raise _unauthorized()
    return AuthContext(user_id=user_id, access_token=token)


async def verify_token(request: Request) -> AuthContext:
    return await get_auth_context(request)


AuthDep = Annotated[AuthContext, Depends(verify_token)]
