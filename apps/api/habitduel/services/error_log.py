from __future__ import annotations

import logging
import traceback
from typing import Any

from habitduel.core.config import settings
from habitduel.services.privacy import redact_secrets_text, sanitize_for_log
from habitduel.services.supabase_rest import SupabaseRest

logger = logging.getLogger(__name__)

_STACK_MAX = 8000


def _format_stack(err: BaseException) -> str:
    raw = "".join(traceback.format_exception(type(err), err, err.__traceback__))
    return redact_secrets_text(raw[:_STACK_MAX])


async def log_system_error(
    *,
    route: str,
    message: str,
    user_id: str | None = None,
    err: BaseException | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    # Best-effort; never raise.
    try:
        row: dict[str, Any] = {
            "route": sanitize_for_log(route),
            "message": sanitize_for_log(message),
            "stack": _format_stack(err) if err is not None else None,
            "user_id": user_id,
            "meta": sanitize_for_log(meta or {}),
        }
        sb = SupabaseRest(str(settings.supabase_url), settings.supabase_service_role_key)
        await sb.insert_one(
            "system_errors", bearer_token=settings.supabase_service_role_key, row=row
        )
    except Exception:
        logger.warning("system error row not recorded route=%s", route, exc_info=True)
