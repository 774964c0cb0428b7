from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

ARRIVAL_LEAD = timedelta(minutes=15)


class MeetupStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class MeetupPhase(str, Enum):
    FILLING_UP = "filling_up"
    ARRIVAL = "arrival"
    LIVE = "live"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PhaseInfo:
    phase: MeetupPhase
    label: str


def end_time(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=duration_minutes)


def compute_phase(start: datetime, duration_minutes: int, status: str, now: datetime) -> PhaseInfo:
    """Derive the lifecycle phase of a meetup from wall-clock time.

    Ordered decision list, first match wins. Pure: callers re-evaluate on
    every poll since the result only depends on ``now``.
    """
    if status == MeetupStatus.CANCELLED.value:
        return PhaseInfo(MeetupPhase.CANCELLED, "Cancelled")

    if now >= end_time(start, duration_minutes):
        return PhaseInfo(MeetupPhase.COMPLETED, "Completed")

    if now >= start:
        return PhaseInfo(MeetupPhase.LIVE, "Live Now")

    if now >= start - ARRIVAL_LEAD:
        return PhaseInfo(MeetupPhase.ARRIVAL, "Gathering")

    if status == MeetupStatus.CONFIRMED.value:
        return PhaseInfo(MeetupPhase.FILLING_UP, "Confirmed")
    return PhaseInfo(MeetupPhase.FILLING_UP, "Filling Up")


def next_phase_change(start: datetime, duration_minutes: int, status: str, now: datetime) -> datetime | None:
    """Instant at which ``compute_phase`` will next return a different phase.

    None once the phase is terminal (cancelled or completed).
    """
    if status == MeetupStatus.CANCELLED.value:
        return None
    for boundary in (start - ARRIVAL_LEAD, start, end_time(start, duration_minutes)):
        if now < boundary:
            return boundary
    return None


def is_visible_in_explore(start: datetime, duration_minutes: int, status: str, now: datetime) -> bool:
    # only joinable meetups that have not ended
    if status not in (MeetupStatus.PENDING.value, MeetupStatus.CONFIRMED.value):
        return False
    return now < end_time(start, duration_minutes)


def is_active(start: datetime, duration_minutes: int, status: str, now: datetime) -> bool:
    if status == MeetupStatus.CANCELLED.value:
        return False
    return now < end_time(start, duration_minutes)
