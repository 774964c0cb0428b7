from __future__ import annotations
from datetime import datetime, timedelta
from enum import Enum

from .phase import end_time


class CommitmentStatus(str, Enum):
    CONFIRMED = "confirmed"
    UNSURE = "unsure"
    CANCELLED = "cancelled"
    ON_THE_WAY = "on_the_way"
    RUNNING_LATE = "running_late"
    ARRIVED = "arrived"
    NO_SHOW = "no_show"


class CommitmentPhase(str, Enum):
    TOO_EARLY = "too_early"
    INTENTION = "intention"
    STATUS_UPDATE = "status_update"
    ARRIVAL = "arrival"
    LIVE = "live"
    ENDED = "ended"


INTENTION_OPENS = timedelta(hours=3)
STATUS_UPDATE_OPENS = timedelta(hours=1)
ARRIVAL_OPENS = timedelta(minutes=10)

# Statuses that take a participant out of the meetup for good.
TERMINAL = frozenset({CommitmentStatus.CANCELLED, CommitmentStatus.NO_SHOW})

# phase -> {target: allowed current statuses}; None stands for "not set yet"
_TRANSITIONS: dict[CommitmentPhase, dict[CommitmentStatus, frozenset]] = {
    CommitmentPhase.INTENTION: {
        CommitmentStatus.CONFIRMED: frozenset({None, CommitmentStatus.UNSURE, CommitmentStatus.CANCELLED}),
        CommitmentStatus.UNSURE: frozenset({None}),
        CommitmentStatus.CANCELLED: frozenset({None, CommitmentStatus.UNSURE, CommitmentStatus.CONFIRMED}),
    },
    CommitmentPhase.STATUS_UPDATE: {
        CommitmentStatus.ON_THE_WAY: frozenset({
            None, CommitmentStatus.CONFIRMED, CommitmentStatus.UNSURE, CommitmentStatus.RUNNING_LATE,
        }),
        CommitmentStatus.RUNNING_LATE: frozenset({None, CommitmentStatus.CONFIRMED, CommitmentStatus.UNSURE}),
        CommitmentStatus.CANCELLED: frozenset({None, CommitmentStatus.CONFIRMED, CommitmentStatus.UNSURE}),
    },
}

# system principals (scheduled jobs, moderators) may record a no-show once the meetup is underway
_SYSTEM_TRANSITIONS: dict[CommitmentPhase, dict[CommitmentStatus, frozenset]] = {
    phase: {
        CommitmentStatus.NO_SHOW: frozenset({
            None, CommitmentStatus.CONFIRMED, CommitmentStatus.UNSURE,
            CommitmentStatus.ON_THE_WAY, CommitmentStatus.RUNNING_LATE,
        }),
    }
    for phase in (CommitmentPhase.ARRIVAL, CommitmentPhase.LIVE, CommitmentPhase.ENDED)
}


def commitment_phase(start: datetime, duration_minutes: int, now: datetime) -> CommitmentPhase:
    until_start = start - now
    if now > end_time(start, duration_minutes):
        return CommitmentPhase.ENDED
    if now >= start:
        return CommitmentPhase.LIVE
    if until_start <= ARRIVAL_OPENS:
        return CommitmentPhase.ARRIVAL
    if until_start <= STATUS_UPDATE_OPENS:
        return CommitmentPhase.STATUS_UPDATE
    if until_start <= INTENTION_OPENS:
        return CommitmentPhase.INTENTION
    return CommitmentPhase.TOO_EARLY


def parse_status(value: str | None) -> CommitmentStatus | None:
    # legacy rows carry "pending" or "getting_ready"; both count as not set
    if value is None:
        return None
    try:
        return CommitmentStatus(value)
    except ValueError:
        return None


def allowed_targets(
    phase: CommitmentPhase, current: CommitmentStatus | None, *, system: bool = False
) -> set[CommitmentStatus]:
    table = _SYSTEM_TRANSITIONS if system else _TRANSITIONS
    return {target for target, sources in table.get(phase, {}).items() if current in sources}


def can_transition(
    phase: CommitmentPhase,
    current: CommitmentStatus | None,
    target: CommitmentStatus,
    *,
    system: bool = False,
) -> bool:
    return target in allowed_targets(phase, current, system=system)


def triggers_failover(is_host: bool, target: CommitmentStatus) -> bool:
    return is_host and target in TERMINAL
