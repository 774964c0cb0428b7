from __future__ import annotations
from collections import Counter
from datetime import datetime
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.commitment import CommitmentPhase, CommitmentStatus, commitment_phase, parse_status
from ..core.errors import ArrivalsNotVisible
from ..core.windows import in_arrival_window
from ..models import Meetup
from .meetups import get_approved_membership, list_approved_memberships

PENDING = "pending"

# categories surfaced per phase, in display order
_VISIBLE = {
    CommitmentPhase.INTENTION: (CommitmentStatus.CONFIRMED, CommitmentStatus.UNSURE),
    CommitmentPhase.STATUS_UPDATE: (
        CommitmentStatus.ON_THE_WAY, CommitmentStatus.RUNNING_LATE, CommitmentStatus.CONFIRMED,
    ),
    CommitmentPhase.ARRIVAL: (CommitmentStatus.ARRIVED, CommitmentStatus.ON_THE_WAY, CommitmentStatus.RUNNING_LATE),
}
_VISIBLE[CommitmentPhase.LIVE] = _VISIBLE[CommitmentPhase.ARRIVAL]
_VISIBLE[CommitmentPhase.ENDED] = _VISIBLE[CommitmentPhase.ARRIVAL]


def count_statuses(statuses) -> Counter:
    counts: Counter = Counter()
    for raw in statuses:
        status = parse_status(raw)
        counts[status.value if status else PENDING] += 1
    return counts


def rollup(phase: CommitmentPhase, counts: Counter) -> dict[str, int]:
    """Counts to show for ``phase``; zero categories are dropped, nothing before intention."""
    return {s.value: counts[s.value] for s in _VISIBLE.get(phase, ()) if counts[s.value] > 0}


async def readiness(db: AsyncSession, meetup: Meetup, *, now: datetime) -> tuple[CommitmentPhase, dict[str, int]]:
    phase = commitment_phase(meetup.start, meetup.duration_minutes, now)
    members = await list_approved_memberships(db, meetup.id)
    return phase, rollup(phase, count_statuses(m.commitment_status for m in members))


async def arrivals(
    db: AsyncSession,
    meetup: Meetup,
    *,
    viewer_id: uuid.UUID,
    now: datetime,
    threshold: int,
) -> tuple[int, list[uuid.UUID] | None]:
    """Who has arrived, shown to participants around the start time.

    Identities are only disclosed once at least ``threshold`` people are there.
    """
    if await get_approved_membership(db, meetup.id, viewer_id) is None:
        raise ArrivalsNotVisible()
    if not in_arrival_window(meetup.start, now):
        raise ArrivalsNotVisible()

    arrived = [
        m.user_id for m in await list_approved_memberships(db, meetup.id)
        if m.arrival_status == CommitmentStatus.ARRIVED.value
    ]
    return len(arrived), (arrived if len(arrived) >= threshold else None)
