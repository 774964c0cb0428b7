from __future__ import annotations
from datetime import datetime, timedelta
from enum import Enum

from .phase import end_time

SCAN_MARGIN = timedelta(minutes=15)
ANCHOR_OPENS_BEFORE = timedelta(minutes=10)
ANCHOR_CLOSES_AFTER = timedelta(minutes=30)
ARRIVAL_OPENS_BEFORE = timedelta(minutes=10)
ARRIVAL_CLOSES_AFTER = timedelta(minutes=15)


class ScanPhase(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


def scan_window(start: datetime, duration_minutes: int, phase: ScanPhase) -> tuple[datetime, datetime]:
    """Closed interval during which scans for ``phase`` are accepted."""
    anchor = start if phase == ScanPhase.ENTRY else end_time(start, duration_minutes)
    return anchor - SCAN_MARGIN, anchor + SCAN_MARGIN


def in_scan_window(start: datetime, duration_minutes: int, phase: ScanPhase, now: datetime) -> bool:
    opens, closes = scan_window(start, duration_minutes, phase)
    return opens <= now <= closes


def active_scan_phase(start: datetime, duration_minutes: int, now: datetime) -> ScanPhase | None:
    # entry wins when a very short meetup makes both windows overlap
    for phase in (ScanPhase.ENTRY, ScanPhase.EXIT):
        if in_scan_window(start, duration_minutes, phase, now):
            return phase
    return None


def anchor_window(start: datetime, duration_minutes: int) -> tuple[datetime, datetime]:
    """Interval in which the host's verification screen is usable at all."""
    return start - ANCHOR_OPENS_BEFORE, end_time(start, duration_minutes) + ANCHOR_CLOSES_AFTER


def in_anchor_window(start: datetime, duration_minutes: int, now: datetime) -> bool:
    opens, closes = anchor_window(start, duration_minutes)
    return opens <= now <= closes


def in_arrival_window(start: datetime, now: datetime) -> bool:
    return start - ARRIVAL_OPENS_BEFORE <= now <= start + ARRIVAL_CLOSES_AFTER
