from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import errors
from ..core.commitment import CommitmentStatus
from ..core.phase import MeetupStatus, end_time
from ..core.qr import check_fresh, parse_qr, sign_qr, verify_signature
from ..core.windows import ScanPhase, active_scan_phase, in_scan_window, scan_window
from ..models import Attendance, AttendanceStatus, Meetup, Membership
from . import notify
from .meetups import get_approved_membership, get_meetup, list_approved_memberships, require_meetup

logger = logging.getLogger(__name__)

SUCCESS_MESSAGES = {
    ScanPhase.ENTRY: "You're checked in. Take a breath and settle in ✨",
    ScanPhase.EXIT: "Thanks for staying till the end. That matters 🤍",
}


@dataclass
class VerifyResult:
    phase: ScanPhase
    message: str
    record: Attendance


# --- issuer (host side)

def _closed_reason(meetup: Meetup, now: datetime) -> errors.NookError:
    entry_opens, _ = scan_window(meetup.start, meetup.duration_minutes, ScanPhase.ENTRY)
    _, exit_closes = scan_window(meetup.start, meetup.duration_minutes, ScanPhase.EXIT)
    if now < entry_opens:
        return errors.AnchorNotActive()
    if now > exit_closes:
        return errors.AnchorNotActive("Host mode has closed for this Nook 🌙")
    return errors.BetweenScanWindows()


async def issue_token(
    db: AsyncSession,
    *,
    meetup_id: uuid.UUID,
    host_id: uuid.UUID,
    now: datetime,
    phase: ScanPhase | None = None,
) -> Dict[str, Any]:
    """Sign a short-lived attendance token for whichever scan window is open.

    ``phase`` pins the window explicitly; otherwise the open one is used.
    """
    meetup = await require_meetup(db, meetup_id)
    if meetup.status == MeetupStatus.CANCELLED:
        raise errors.MeetupCancelled()
    if meetup.host_id != host_id:
        raise errors.NotHost()

    active = active_scan_phase(meetup.start, meetup.duration_minutes, now)
    if phase is not None and in_scan_window(meetup.start, meetup.duration_minutes, phase, now):
        active = phase
    elif phase is not None and active is not None:
        raise errors.EntryWindowClosed() if phase == ScanPhase.ENTRY else errors.ExitWindowClosed()

    if active is None:
        raise _closed_reason(meetup, now)

    token = sign_qr(meetup_id=str(meetup.id), phase=active, now=now)
    logger.info("issued %s token for meetup %s", active.value, meetup.id)
    return token


# --- verifier (participant scan)

async def _load_meetup_for_token(db: AsyncSession, meetup_id: str) -> Meetup:
    try:
        mid = uuid.UUID(meetup_id)
    except ValueError:
        raise errors.MeetupNotFound()
    meetup = await get_meetup(db, mid)
    if meetup is None:
        raise errors.MeetupNotFound()
    if meetup.status == MeetupStatus.CANCELLED:
        raise errors.MeetupCancelled()
    return meetup


def _check_window(meetup: Meetup, phase_value: str, now: datetime) -> ScanPhase:
    try:
        phase = ScanPhase(phase_value)
    except ValueError:
        raise errors.UnknownScanPhase()
    if not in_scan_window(meetup.start, meetup.duration_minutes, phase, now):
        raise errors.EntryWindowClosed() if phase == ScanPhase.ENTRY else errors.ExitWindowClosed()
    return phase


async def _get_record(db: AsyncSession, meetup_id: uuid.UUID, user_id: uuid.UUID) -> Attendance | None:
    return (await db.execute(
        select(Attendance)
        .where(Attendance.meetup_id == meetup_id, Attendance.user_id == user_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()


async def _mark_entry(db: AsyncSession, meetup: Meetup, user_id: uuid.UUID, existing: Attendance | None, now: datetime):
    if existing is None:
        db.add(Attendance(
            meetup_id=meetup.id,
            user_id=user_id,
            status=AttendanceStatus.ATTENDED,
            entry_marked=True,
            entry_time=now,
        ))
        try:
            await db.flush()
        except IntegrityError:
            # a concurrent entry scan created the row first
            await db.rollback()
            raise errors.AlreadyCheckedIn()
    else:
        res = await db.execute(
            update(Attendance)
            .where(Attendance.id == existing.id, Attendance.entry_marked.is_(False))
            .values(entry_marked=True, entry_time=now, status=AttendanceStatus.ATTENDED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            await db.rollback()
            raise errors.AlreadyCheckedIn()

    # keep the legacy arrival marker and the readiness rollup in step
    await db.execute(
        update(Membership)
        .where(Membership.meetup_id == meetup.id, Membership.user_id == user_id)
        .values(
            commitment_status=CommitmentStatus.ARRIVED.value,
            arrival_status=CommitmentStatus.ARRIVED.value,
            arrival_timestamp=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )


async def _mark_exit(db: AsyncSession, existing: Attendance, now: datetime):
    res = await db.execute(
        update(Attendance)
        .where(
            Attendance.id == existing.id,
            Attendance.entry_marked.is_(True),
            Attendance.exit_marked.is_(False),
        )
        .values(exit_marked=True, exit_time=now, status=AttendanceStatus.ATTENDED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        await db.rollback()
        raise errors.AlreadyCheckedOut()


async def verify_attendance(
    db: AsyncSession,
    *,
    participant_id: uuid.UUID,
    raw_token: Any,
    now: datetime,
) -> VerifyResult:
    """Validate a scanned token and record the entry or exit it authorises.

    Checks run in a fixed order and stop at the first failure: shape,
    signature, token expiry, meetup availability, live scan window,
    membership, then attendance state. The state checks are repeated as
    conditional updates so concurrent scans cannot double-mark a record.
    """
    token = parse_qr(raw_token)
    verify_signature(token)
    check_fresh(token, now)

    meetup = await _load_meetup_for_token(db, token["meetup_id"])
    phase = _check_window(meetup, token["phase"], now)

    if await get_approved_membership(db, meetup.id, participant_id) is None:
        raise errors.NotParticipant()

    existing = await _get_record(db, meetup.id, participant_id)
    if phase == ScanPhase.ENTRY and existing is not None and existing.entry_marked:
        raise errors.AlreadyCheckedIn()
    if phase == ScanPhase.EXIT and existing is not None and existing.exit_marked:
        raise errors.AlreadyCheckedOut()
    if phase == ScanPhase.EXIT and (existing is None or not existing.entry_marked):
        raise errors.EntryRequired()

    if phase == ScanPhase.ENTRY:
        await _mark_entry(db, meetup, participant_id, existing, now)
    else:
        await _mark_exit(db, existing, now)
    await db.commit()

    record = await _get_record(db, meetup.id, participant_id)
    logger.info("meetup %s user %s %s scan recorded", meetup.id, participant_id, phase.value)
    return VerifyResult(phase=phase, message=SUCCESS_MESSAGES[phase], record=record)


# --- listings

async def list_meetup_records(db: AsyncSession, meetup: Meetup, *, viewer_id: uuid.UUID) -> list[Attendance]:
    if meetup.host_id != viewer_id:
        raise errors.NotHost("Only the host can see the attendance list 🌿")
    rows = (await db.execute(
        select(Attendance).where(Attendance.meetup_id == meetup.id).order_by(Attendance.entry_time.asc())
    )).scalars().all()
    return list(rows)


async def list_user_records(db: AsyncSession, user_id: uuid.UUID) -> list[Attendance]:
    rows = (await db.execute(
        select(Attendance).where(Attendance.user_id == user_id).order_by(Attendance.created_at.desc())
    )).scalars().all()
    return list(rows)


# --- manual roll call (host)

async def mark_attendance(
    db: AsyncSession,
    meetup: Meetup,
    *,
    host_id: uuid.UUID,
    marks: Dict[uuid.UUID, AttendanceStatus],
    now: datetime,
    sink: notify.NotificationSink,
) -> list[Attendance]:
    """Host sets each listed participant to attended or no-show.

    Only allowed while the meetup runs, ``[start, end]``. A mark overwrites
    whatever the scans recorded. Every marked participant is notified.
    """
    if meetup.status == MeetupStatus.CANCELLED:
        raise errors.MeetupCancelled()
    if meetup.host_id != host_id:
        raise errors.NotHost("Only the host can mark attendance 🌿")
    if not meetup.start <= now <= end_time(meetup.start, meetup.duration_minutes):
        raise errors.MarkingWindowClosed()
    if not marks:
        return []

    approved = {m.user_id for m in await list_approved_memberships(db, meetup.id)}
    approved.discard(host_id)
    for user_id in marks:
        if user_id not in approved:
            raise errors.NotParticipant("Only approved participants can be marked 🌿")

    user_ids = list(marks)
    existing = {
        r.user_id: r for r in (await db.execute(
            select(Attendance).where(Attendance.meetup_id == meetup.id, Attendance.user_id.in_(user_ids))
        )).scalars().all()
    }
    no_shows = [uid for uid, status in marks.items() if status == AttendanceStatus.NO_SHOW]
    missed_before = set()
    if no_shows:
        missed_before = set((await db.execute(
            select(Attendance.user_id).where(
                Attendance.user_id.in_(no_shows),
                Attendance.status == AttendanceStatus.NO_SHOW,
                Attendance.meetup_id != meetup.id,
            ).distinct()
        )).scalars().all())

    for user_id, status in marks.items():
        row = existing.get(user_id)
        if row is None:
            db.add(Attendance(meetup_id=meetup.id, user_id=user_id, status=status))
        else:
            row.status = status
    await db.commit()
    logger.info("meetup %s: host %s marked %d participants", meetup.id, host_id, len(marks))

    intents = [
        notify.attendance_marked(
            user_id, meetup.id, meetup.title,
            attended=(status == AttendanceStatus.ATTENDED),
            missed_before=(user_id in missed_before),
        )
        for user_id, status in marks.items()
    ]
    await notify.emit_best_effort(sink, intents)

    rows = (await db.execute(
        select(Attendance)
        .where(Attendance.meetup_id == meetup.id, Attendance.user_id.in_(user_ids))
        .execution_options(populate_existing=True)
    )).scalars().all()
    return list(rows)
