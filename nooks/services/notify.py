from __future__ import annotations
from dataclasses import asdict, dataclass
from typing import Protocol
import logging

from ..core.nats import publish_notification

logger = logging.getLogger(__name__)

CATEGORY_CANCELLED = "cancelled"
CATEGORY_HOST_TRANSFERRED = "host_transferred"
CATEGORY_ATTENDANCE = "attendance"


@dataclass(frozen=True)
class NotificationIntent:
    recipient_id: str
    title: str
    message: str
    category: str
    meetup_id: str


class NotificationSink(Protocol):
    async def emit(self, intents: list[NotificationIntent]) -> None: ...


class NatsNotificationSink:
    """Hands intents to the delivery side over NATS; storage and push live elsewhere."""

    async def emit(self, intents: list[NotificationIntent]) -> None:
        for intent in intents:
            await publish_notification(asdict(intent))


async def emit_best_effort(sink: NotificationSink, intents: list[NotificationIntent]) -> bool:
    """Deliver intents without letting a delivery failure reach the caller."""
    if not intents:
        return True
    try:
        await sink.emit(intents)
    except Exception:
        logger.warning(
            "notification emit failed for meetup %s (%d intents)",
            intents[0].meetup_id, len(intents), exc_info=True,
        )
        return False
    return True


def meetup_cancelled(recipient_id, meetup_id, *, host_stepped_out: bool) -> NotificationIntent:
    if host_stepped_out:
        message = "The host couldn't attend and no one else stepped in. You can always join another circle soon 🤍"
    else:
        message = "The host had to cancel this Nook. You can always join another circle soon 🤍"
    return NotificationIntent(
        recipient_id=str(recipient_id),
        title="This one won't happen today 🌙",
        message=message,
        category=CATEGORY_CANCELLED,
        meetup_id=str(meetup_id),
    )


def host_transferred(recipient_id, meetup_id, *, is_new_host: bool) -> NotificationIntent:
    if is_new_host:
        title = "The circle's in your hands 🌙"
        message = "The original host couldn't make it. You're now guiding this Nook 🤍"
    else:
        title = "Small shift 🌿"
        message = "The host has changed, but the Nook continues. See you there ✨"
    return NotificationIntent(
        recipient_id=str(recipient_id),
        title=title,
        message=message,
        category=CATEGORY_HOST_TRANSFERRED,
        meetup_id=str(meetup_id),
    )


def attendance_marked(recipient_id, meetup_id, topic: str, *, attended: bool, missed_before: bool = False) -> NotificationIntent:
    if attended:
        title = "Glad you showed up 🌿"
        message = f'Your presence at "{topic}" has been noted. Circles feel better when people truly show up ✨'
    elif missed_before:
        title = "We missed you 🌿"
        message = f'You weren\'t there for "{topic}". Showing up consistently builds your trust circle 🌙'
    else:
        title = "Life happens 🌙"
        message = (
            f'Looks like you missed "{topic}". It\'s okay, just update your status next time '
            "so no one waits for you 🤍"
        )
    return NotificationIntent(
        recipient_id=str(recipient_id),
        title=title,
        message=message,
        category=CATEGORY_ATTENDANCE,
        meetup_id=str(meetup_id),
    )
