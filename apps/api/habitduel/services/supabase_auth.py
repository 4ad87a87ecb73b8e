from __future__ import annotations

import time
from typing import Any

from habitduel.core.config import settings
from habitduel.services.supabase_rest import get_http

_USER_CACHE: dict[str, tuple[float, dict[str, Any]]] = {}
_CACHE_TTL_SECONDS = 30.0
_CACHE_MAX_ENTRIES = 2048


def _cache_get(token: str) -> dict[str, Any] | None:
    entry = _USER_CACHE.get(token)
    if entry is None:
        return None
    expires_at, user = entry
    if expires_at <= time.time():
        _USER_CACHE.pop(token, None)
        return None
    return user


def _cache_put(token: str, user: dict[str, Any]) -> None:
    if len(_USER_CACHE) >= _CACHE_MAX_ENTRIES:
        _USER_CACHE.clear()
    _USER_CACHE[token] = (time.time() + _CACHE_TTL_SECONDS, user)


def clear_user_cache() -> None:
    _USER_CACHE.clear()


async def get_current_user(
    *, access_token: str, use_cache: bool = True
) -> dict[str, Any]:
    """Resolve the Supabase Auth user behind an access token.

    Raises ``httpx.HTTPStatusError`` for rejected tokens.
    """
    if use_cache:
        cached = _cache_get(access_token)
        if cached is not None:
            return cached

    url = str(settings.supabase_url).rstrip("/") + "/auth/v1/user"
    resp = await get_http().get(
        url,
        headers={
            "apikey": settings.supabase_anon_key,
            "authorization": f"Bearer {access_token}",
            "accept": "application/json",
        },
    )
    resp.raise_for_status()
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError("Unexpected Supabase user response")

    if use_cache and isinstance(data.get("id"), str):
        _cache_put(access_token, data)
    return data
