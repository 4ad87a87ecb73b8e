from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from habitduel.schemas.challenges import ChallengeSummary

logger = logging.getLogger(__name__)

NotificationType = Literal[
    "challenge_invite",
    "challenge_finish_request",
    "challenge_finished",
]

TITLE_MAX = 120
MESSAGE_MAX = 280


@dataclass(frozen=True)
class Notification:
    user_id: str
    type: NotificationType
    title: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title.strip()[:TITLE_MAX],
            "message": self.message.strip()[:MESSAGE_MAX],
            "metadata": self.metadata,
            "read_at": None,
        }


def _display_name(summary: ChallengeSummary, user_id: str) -> str:
    for participant in (summary.owner, summary.opponent):
        if participant is not None and participant.id == user_id:
            return participant.username
    return "Your friend"


def challenge_invite(summary: ChallengeSummary) -> Notification | None:
    if summary.type != "friend" or not summary.opponent_id:
        return None
    suffix = f" {summary.title}" if summary.title else ""
    return Notification(
        user_id=summary.opponent_id,
        type="challenge_invite",
        title="New challenge received",
        message=f"{_display_name(summary, summary.owner_id)} challenged you{suffix}.",
        metadata={"challenge_id": summary.id},
    )


def finish_notifications(
    summary: ChallengeSummary, requester_id: str, *, now: datetime
) -> list[Notification]:
    """Notifications owed after ``requester_id`` asked to finish a challenge."""
    if summary.status == "pending_finish":
        target = summary.opponent_id if requester_id == summary.owner_id else summary.owner_id
        if not target:
            return []
        return [
            Notification(
                user_id=target,
                type="challenge_finish_request",
                title="Request to close the challenge",
                message=(
                    f"{_display_name(summary, requester_id)} wants to close "
                    f"{summary.title or 'this challenge'}."
                ),
                metadata={"challenge_id": summary.id},
            )
        ]

    if summary.status != "finished":
        return []

    message = f"Final score {summary.owner_wins}-{summary.opponent_wins}"
    if summary.draws:
        message += f" ({summary.draws} draws)"
    finished_at = summary.end_date or now
    metadata = {
        "challenge_id": summary.id,
        "owner_wins": summary.owner_wins,
        "opponent_wins": summary.opponent_wins,
        "draws": summary.draws,
        "overall_winner": summary.overall_winner,
        "finished_at": finished_at.isoformat(),
    }
    recipients = [u for u in (summary.owner_id, summary.opponent_id) if u]
    return [
        Notification(
            user_id=user_id,
            type="challenge_finished",
            title=f"{summary.title or 'Challenge'} finished",
            message=message,
            metadata=metadata,
        )
        for user_id in recipients
    ]


class Notifier:
    """Writes notification rows; delivery failures never fail the request."""

    def __init__(self, sb: Any, *, bearer_token: str):
        self._sb = sb
        self._token = bearer_token

    async def send(self, notification: Notification | None) -> None:
        if notification is None:
            return
        try:
            await self._sb.insert_one(
                "notifications", bearer_token=self._token, row=notification.to_row()
            )
        except Exception:
            # Best-effort; the challenge change is already saved.
            logger.warning(
                "notification not delivered type=%s user=%s",
                notification.type,
                notification.user_id,
                exc_info=True,
            )

    async def send_all(self, notifications: list[Notification]) -> None:
        for notification in notifications:
            await self.send(notification)
