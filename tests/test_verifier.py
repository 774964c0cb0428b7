import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from nooks.core import errors
from nooks.core.phase import MeetupStatus
from nooks.core.qr import sign_qr
from nooks.core.windows import ScanPhase
from nooks.models import Attendance, AttendanceStatus, MemberStatus, Membership, as_utc
from nooks.services.attendance import verify_attendance

from conftest import START, add_member


@pytest.fixture
async def participant(db, meetup):
    user_id = uuid.uuid4()
    await add_member(db, meetup, user_id, commitment="on_the_way")
    return user_id


def entry_token(meetup, at):
    return sign_qr(meetup_id=str(meetup.id), phase=ScanPhase.ENTRY, now=at)


def exit_token(meetup, at):
    return sign_qr(meetup_id=str(meetup.id), phase=ScanPhase.EXIT, now=at)


async def attendance_rows(db):
    return (await db.execute(select(func.count()).select_from(Attendance))).scalar_one()


async def test_entry_creates_attended_record_and_marks_arrival(db, meetup, participant):
    now = START - timedelta(minutes=5)
    result = await verify_attendance(db, participant_id=participant, raw_token=entry_token(meetup, now), now=now)

    assert result.phase == ScanPhase.ENTRY
    assert result.record.entry_marked
    assert result.record.status == AttendanceStatus.ATTENDED
    assert as_utc(result.record.entry_time) == now

    mem = (await db.execute(
        select(Membership).where(Membership.user_id == participant).execution_options(populate_existing=True)
    )).scalar_one()
    assert mem.commitment_status == "arrived"
    assert mem.arrival_status == "arrived"


async def test_second_entry_is_rejected_and_keeps_first_time(db, meetup, participant):
    first = START - timedelta(minutes=13, seconds=30)
    token = entry_token(meetup, START - timedelta(minutes=14))
    await verify_attendance(db, participant_id=participant, raw_token=token, now=first)

    with pytest.raises(errors.AlreadyCheckedIn):
        await verify_attendance(
            db, participant_id=participant, raw_token=token, now=START - timedelta(minutes=13, seconds=20),
        )

    row = (await db.execute(
        select(Attendance).where(Attendance.user_id == participant).execution_options(populate_existing=True)
    )).scalar_one()
    assert as_utc(row.entry_time) == first


async def test_exit_without_entry_is_rejected_and_creates_nothing(db, meetup, participant):
    now = START + timedelta(minutes=50)
    with pytest.raises(errors.EntryRequired):
        await verify_attendance(db, participant_id=participant, raw_token=exit_token(meetup, now), now=now)
    assert await attendance_rows(db) == 0


async def test_exit_after_entry_completes_attendance(db, meetup, participant):
    t_in = START
    await verify_attendance(db, participant_id=participant, raw_token=entry_token(meetup, t_in), now=t_in)
    t_out = START + timedelta(minutes=46)
    result = await verify_attendance(db, participant_id=participant, raw_token=exit_token(meetup, t_out), now=t_out)

    assert result.phase == ScanPhase.EXIT
    assert result.record.exit_marked
    assert result.record.status == AttendanceStatus.ATTENDED

    with pytest.raises(errors.AlreadyCheckedOut):
        t_again = t_out + timedelta(seconds=10)
        await verify_attendance(db, participant_id=participant, raw_token=exit_token(meetup, t_again), now=t_again)


async def test_window_boundary(db, meetup, participant):
    too_early = START - timedelta(minutes=15, seconds=1)
    with pytest.raises(errors.EntryWindowClosed):
        await verify_attendance(
            db, participant_id=participant, raw_token=entry_token(meetup, too_early), now=too_early,
        )

    opens = START - timedelta(minutes=15)
    result = await verify_attendance(db, participant_id=participant, raw_token=entry_token(meetup, opens), now=opens)
    assert result.phase == ScanPhase.ENTRY


async def test_exit_token_outside_exit_window(db, meetup, participant):
    now = START + timedelta(minutes=76)
    with pytest.raises(errors.ExitWindowClosed):
        await verify_attendance(db, participant_id=participant, raw_token=exit_token(meetup, now), now=now)


async def test_forged_signature_is_rejected_even_when_everything_else_is_valid(db, meetup, participant):
    now = START
    token = entry_token(meetup, now)
    token["signature"] = "f" * 16 if token["signature"] != "f" * 16 else "e" * 16
    with pytest.raises(errors.InvalidSignature):
        await verify_attendance(db, participant_id=participant, raw_token=token, now=now)
    assert await attendance_rows(db) == 0


async def test_expired_token(db, meetup, participant):
    token = entry_token(meetup, START - timedelta(minutes=5))
    with pytest.raises(errors.TokenExpired):
        await verify_attendance(
            db, participant_id=participant, raw_token=token, now=START - timedelta(minutes=3, seconds=59),
        )


async def test_expiry_is_checked_before_meetup_lookup(db, participant):
    token = sign_qr(meetup_id=str(uuid.uuid4()), phase=ScanPhase.ENTRY, now=START)
    with pytest.raises(errors.TokenExpired):
        await verify_attendance(db, participant_id=participant, raw_token=token, now=START + timedelta(minutes=2))


async def test_unknown_meetup(db, participant):
    token = sign_qr(meetup_id=str(uuid.uuid4()), phase=ScanPhase.ENTRY, now=START)
    with pytest.raises(errors.MeetupNotFound):
        await verify_attendance(db, participant_id=participant, raw_token=token, now=START)


async def test_cancelled_meetup(db, meetup, participant):
    meetup.status = MeetupStatus.CANCELLED
    await db.commit()
    with pytest.raises(errors.MeetupCancelled):
        await verify_attendance(db, participant_id=participant, raw_token=entry_token(meetup, START), now=START)


async def test_unknown_phase(db, meetup, participant):
    from nooks.core.qr import sign_payload, to_millis

    issued = to_millis(START)
    token = {
        "meetup_id": str(meetup.id), "phase": "midway", "issued_at": issued,
        "expires_at": issued + 60_000, "signature": sign_payload(str(meetup.id), "midway", issued),
    }
    with pytest.raises(errors.UnknownScanPhase):
        await verify_attendance(db, participant_id=participant, raw_token=token, now=START)


async def test_only_approved_members_may_scan(db, meetup):
    stranger = uuid.uuid4()
    pending = uuid.uuid4()
    await add_member(db, meetup, pending, status=MemberStatus.PENDING)
    for user_id in (stranger, pending):
        with pytest.raises(errors.NotParticipant):
            await verify_attendance(db, participant_id=user_id, raw_token=entry_token(meetup, START), now=START)


async def test_malformed_token(db, participant):
    with pytest.raises(errors.MalformedToken):
        await verify_attendance(db, participant_id=participant, raw_token={"phase": "entry"}, now=START)


async def test_full_evening(db, meetup, participant):
    # token issued at T-14 is accepted at T-13:30 and refused at T-13:20
    token = entry_token(meetup, START - timedelta(minutes=14))
    assert token["expires_at"] - token["issued_at"] == 60_000
    await verify_attendance(db, participant_id=participant, raw_token=token, now=START - timedelta(minutes=13, seconds=30))
    with pytest.raises(errors.AlreadyCheckedIn):
        await verify_attendance(
            db, participant_id=participant, raw_token=token, now=START - timedelta(minutes=13, seconds=20),
        )

    t_exit = START + timedelta(minutes=46)
    result = await verify_attendance(db, participant_id=participant, raw_token=exit_token(meetup, t_exit), now=t_exit)
    assert result.record.entry_marked and result.record.exit_marked
    assert result.record.status == AttendanceStatus.ATTENDED


async def test_stretched_expiry_does_not_keep_a_token_alive(db, meetup, participant):
    token = entry_token(meetup, START - timedelta(minutes=14))
    token["expires_at"] += 20 * 60_000
    with pytest.raises(errors.InvalidSignature):
        await verify_attendance(db, participant_id=participant, raw_token=token, now=START - timedelta(minutes=1))
    assert await attendance_rows(db) == 0
