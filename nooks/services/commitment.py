from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.commitment import (
    CommitmentPhase,
    CommitmentStatus,
    can_transition,
    commitment_phase,
    parse_status,
    triggers_failover,
)
from ..core.errors import CommitmentWriteFailed, MeetupCancelled, MembershipNotFound, TransitionNotAllowed
from ..core.phase import MeetupStatus
from ..models import Meetup, Membership
from .failover import FailoverResult, transfer_host
from .meetups import get_approved_membership
from .notify import NotificationSink

logger = logging.getLogger(__name__)

CONFIRMATION_MESSAGES = {
    CommitmentStatus.CONFIRMED: "You're confirmed! See you there ✨",
    CommitmentStatus.UNSURE: "No rush, let us know when you decide 🌙",
    CommitmentStatus.CANCELLED: "Got it, hope to see you next time 🌙",
    CommitmentStatus.ON_THE_WAY: "See you soon! 🌙",
    CommitmentStatus.RUNNING_LATE: "No rush, see you soon 🌿",
    CommitmentStatus.NO_SHOW: "Couldn't make it this time. See you next time 🌿",
}


@dataclass
class CommitmentOutcome:
    membership: Membership
    status: str
    phase: CommitmentPhase
    message: str
    failover: FailoverResult | None = None


async def set_commitment(
    db: AsyncSession,
    meetup: Meetup,
    *,
    user_id: uuid.UUID,
    target: CommitmentStatus,
    now: datetime,
    system: bool = False,
) -> tuple[Membership, CommitmentPhase]:
    """Validate and persist one commitment transition for ``user_id``."""
    if meetup.status == MeetupStatus.CANCELLED:
        raise MeetupCancelled()

    membership = await get_approved_membership(db, meetup.id, user_id)
    if membership is None:
        raise MembershipNotFound()

    phase = commitment_phase(meetup.start, meetup.duration_minutes, now)
    current = parse_status(membership.commitment_status)
    if not can_transition(phase, current, target, system=system):
        raise TransitionNotAllowed(
            f"Can't switch from {current.value if current else 'unset'} to {target.value} during {phase.value} 🌙"
        )

    membership.commitment_status = target.value
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("commitment write failed for meetup %s user %s", meetup.id, user_id)
        raise CommitmentWriteFailed() from e
    await db.refresh(membership)
    logger.info("meetup %s user %s commitment %s -> %s", meetup.id, user_id, current, target.value)
    return membership, phase


async def change_commitment(
    db: AsyncSession,
    meetup: Meetup,
    *,
    user_id: uuid.UUID,
    target: CommitmentStatus,
    now: datetime,
    sink: NotificationSink,
    system: bool = False,
) -> CommitmentOutcome:
    """Commit the transition, then run host failover when the host stepped out."""
    was_host = meetup.host_id == user_id
    membership, phase = await set_commitment(db, meetup, user_id=user_id, target=target, now=now, system=system)

    outcome = CommitmentOutcome(
        membership=membership, status=target.value, phase=phase, message=CONFIRMATION_MESSAGES[target],
    )
    if not triggers_failover(was_host, target):
        return outcome

    # the status write above stands even if failover cannot complete
    try:
        outcome.failover = await transfer_host(db, meetup, departing_host_id=user_id, now=now, sink=sink)
    except Exception:
        await db.rollback()
        logger.exception("host failover failed for meetup %s", meetup.id)
    return outcome
