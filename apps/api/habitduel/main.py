from __future__ import annotations

from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from habitduel.core.config import settings
from habitduel.core.security import bearer_token_from
from habitduel.routes.challenges import router as challenges_router
from habitduel.services.error_log import log_system_error
from habitduel.services.errors import (
    ChallengeError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from habitduel.services.supabase_auth import get_current_user
from habitduel.services.supabase_rest import SupabaseRestError, close_http


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await close_http()


app = FastAPI(title="HabitDuel API", version="0.1.0", lifespan=lifespan)


def _init_sentry() -> None:
    if not settings.sentry_dsn:
        return
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[FastApiIntegration()],
        traces_sample_rate=max(0.0, min(settings.sentry_traces_sample_rate, 1.0)),
        send_default_pii=False,
        environment=settings.app_env,
    )


_init_sentry()


def _origin(url: str) -> str:
    # CORS compares scheme+host+port; FRONTEND_URL may carry a path.
    p = urlparse(url)
    if p.scheme and p.netloc:
        return f"{p.scheme}://{p.netloc}"
    return url.rstrip("/")


_ALLOWED_ORIGINS = sorted(
    {
        _origin(str(settings.frontend_url)),
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    }
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_CHALLENGE_ERROR_STATUS: tuple[tuple[type[ChallengeError], int], ...] = (
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (ValidationError, 422),
    (ConflictError, 409),
)


def challenge_error_status(exc: ChallengeError) -> int:
    for error_type, status_code in _CHALLENGE_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def _try_get_user_id_from_request(request: Request) -> str | None:
    token = bearer_token_from(request)
    if token is None:
        return None
    try:
        user = await get_current_user(access_token=token, use_cache=True)
    except Exception:
        return None
    uid = user.get("id")
    return uid if isinstance(uid, str) and uid.strip() else None


@app.middleware("http")
async def log_server_error_responses(request: Request, call_next):
    response = await call_next(request)
    if response.status_code >= 500:
        await log_system_error(
            route=str(request.url.path),
            message=f"Server response status {response.status_code}",
            user_id=await _try_get_user_id_from_request(request),
            meta={
                "status_code": response.status_code,
                "method": request.method,
                "path": str(request.url.path),
            },
        )
    return response


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.exception_handler(ChallengeError)
async def challenge_error_handler(_: Request, exc: ChallengeError):
    return JSONResponse(
        status_code=challenge_error_status(exc),
        content={"detail": {"message": exc.message, "code": exc.code}},
    )


@app.exception_handler(SupabaseRestError)
async def supabase_rest_error_handler(request: Request, exc: SupabaseRestError):
    # Propagate 4xx; normalize 5xx to 502.
    status_code = exc.status_code if 400 <= exc.status_code < 500 else 502
    await log_system_error(
        route=str(request.url.path),
        message="Supabase request failed",
        user_id=await _try_get_user_id_from_request(request),
        err=exc,
        meta={
            "status_code": exc.status_code,
            "code": exc.code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": {
                "message": "Database request failed.",
                "hint": exc.hint,
                "code": exc.code,
            }
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    await log_system_error(
        route=str(request.url.path),
        message="Unhandled server error",
        user_id=await _try_get_user_id_from_request(request),
        err=exc,
        meta={"method": request.method},
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(challenges_router, prefix="/api")
