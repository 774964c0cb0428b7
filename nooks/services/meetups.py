from __future__ import annotations
import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import AlreadyCancelled, MeetupNotFound, NotHost
from ..core.phase import MeetupStatus
from ..models import Meetup, MemberStatus, Membership
from . import notify

logger = logging.getLogger(__name__)

async def get_meetup(db: AsyncSession, meetup_id: uuid.UUID) -> Meetup | None:
    return (await db.execute(select(Meetup).where(Meetup.id == meetup_id))).scalar_one_or_none()

async def require_meetup(db: AsyncSession, meetup_id: uuid.UUID) -> Meetup:
    meetup = await get_meetup(db, meetup_id)
    if meetup is None:
        raise MeetupNotFound()
    return meetup

async def get_membership(db: AsyncSession, meetup_id: uuid.UUID, user_id: uuid.UUID) -> Membership | None:
    return (await db.execute(
        select(Membership).where(Membership.meetup_id == meetup_id, Membership.user_id == user_id)
    )).scalar_one_or_none()

async def get_approved_membership(db: AsyncSession, meetup_id: uuid.UUID, user_id: uuid.UUID) -> Membership | None:
    return (await db.execute(
        select(Membership).where(
            Membership.meetup_id == meetup_id,
            Membership.user_id == user_id,
            Membership.status == MemberStatus.APPROVED,
        )
    )).scalar_one_or_none()

async def list_approved_memberships(db: AsyncSession, meetup_id: uuid.UUID) -> list[Membership]:
    """Approved members in join order, earliest first."""
    rows = (await db.execute(
        select(Membership)
        .where(Membership.meetup_id == meetup_id, Membership.status == MemberStatus.APPROVED)
        .order_by(Membership.created_at.asc(), Membership.id.asc())
    )).scalars().all()
    return list(rows)

async def cancel_meetup(
    db: AsyncSession,
    meetup: Meetup,
    *,
    actor_id: uuid.UUID,
    now: datetime,
    sink: notify.NotificationSink,
) -> Meetup:
    """Explicit cancellation by the host. Cancelled is terminal."""
    if meetup.host_id != actor_id:
        raise NotHost("Only the host can cancel this Nook 🌿")
    if meetup.status == MeetupStatus.CANCELLED:
        raise AlreadyCancelled()

    meetup.status = MeetupStatus.CANCELLED
    meetup.cancelled_at = now
    meetup.cancelled_by = actor_id
    await db.commit()
    await db.refresh(meetup)
    logger.info("meetup %s cancelled by host %s", meetup.id, actor_id)

    members = await list_approved_memberships(db, meetup.id)
    intents = [
        notify.meetup_cancelled(m.user_id, meetup.id, host_stepped_out=False)
        for m in members if m.user_id != actor_id
    ]
    await notify.emit_best_effort(sink, intents)
    return meetup
