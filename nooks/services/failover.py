from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.commitment import TERMINAL, parse_status
from ..core.phase import MeetupStatus
from ..models import Meetup
from . import notify
from .meetups import list_approved_memberships

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailoverResult:
    new_host_id: uuid.UUID | None
    cancelled: bool
    notified: bool


async def transfer_host(
    db: AsyncSession,
    meetup: Meetup,
    *,
    departing_host_id: uuid.UUID,
    now: datetime,
    sink: notify.NotificationSink,
) -> FailoverResult:
    """Hand the meetup to the earliest-joined eligible participant, or cancel it.

    Eligible means approved, not the departing host, and not already
    cancelled or marked no-show. The meetup row is committed before any
    notification goes out; notification failures never undo it.
    """
    others = [
        m for m in await list_approved_memberships(db, meetup.id)
        if m.user_id != departing_host_id
    ]
    eligible = [m for m in others if parse_status(m.commitment_status) not in TERMINAL]

    if not eligible:
        meetup.status = MeetupStatus.CANCELLED
        meetup.cancelled_at = now
        meetup.cancelled_by = departing_host_id
        await db.commit()
        logger.info("meetup %s cancelled: host %s left and no one could step in", meetup.id, departing_host_id)

        intents = [notify.meetup_cancelled(m.user_id, meetup.id, host_stepped_out=True) for m in others]
        notified = await notify.emit_best_effort(sink, intents)
        return FailoverResult(new_host_id=None, cancelled=True, notified=notified)

    new_host_id = eligible[0].user_id
    meetup.host_id = new_host_id
    await db.commit()
    logger.info("meetup %s host transferred %s -> %s", meetup.id, departing_host_id, new_host_id)

    intents = [
        notify.host_transferred(m.user_id, meetup.id, is_new_host=(m.user_id == new_host_id))
        for m in others
    ]
    notified = await notify.emit_best_effort(sink, intents)
    return FailoverResult(new_host_id=new_host_id, cancelled=False, notified=notified)
