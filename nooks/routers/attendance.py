from __future__ import annotations
import uuid
import logging
from datetime import datetime
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_claims, get_notifier, get_now, subject_id
from ..core.errors import InternalError, NookError
from ..core.qr import qr_text
from ..core.windows import ScanPhase
from ..core.redis import allow_request
from ..core.nats import publish_attendance
from ..schemas import (
    AttendanceRead, AttendanceToken, MarkRequest, TokenCreate, TokenCreateResponse, VerifyRequest, VerifyResponse,
)
from ..models import Attendance, AttendanceStatus
from ..services import attendance as svc
from ..services.meetups import require_meetup
from ..services.notify import NotificationSink

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/attendance", tags=["attendance"])

def _read(r: Attendance) -> AttendanceRead:
    return AttendanceRead(
        id=r.id, meetup_id=r.meetup_id, user_id=r.user_id, status=r.status.value,
        entry_marked=r.entry_marked, entry_time=r.entry_time,
        exit_marked=r.exit_marked, exit_time=r.exit_time,
    )

# --- 1) Host screen asks for a fresh signed token (refreshed every minute)
@router.post("/tokens", response_model=TokenCreateResponse, status_code=201)
async def create_token(
    payload: TokenCreate,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
):
    token = await svc.issue_token(
        db,
        meetup_id=payload.meetup_id,
        host_id=subject_id(claims),
        now=now,
        phase=ScanPhase(payload.phase) if payload.phase else None,
    )
    return TokenCreateResponse(token=AttendanceToken(**token), qr_text=qr_text(token))

# PNG for kiosk displays
@router.get("/tokens/{meetup_id}/qr.png")
async def create_token_png(
    meetup_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
):
    import qrcode
    from io import BytesIO
    token = await svc.issue_token(db, meetup_id=meetup_id, host_id=subject_id(claims), now=now)
    img = qrcode.make(qr_text(token))
    b = BytesIO(); img.save(b, format="PNG")
    return Response(content=b.getvalue(), media_type="image/png", headers={"Cache-Control": "no-store"})

# --- 2) Participant scans: verify token, record entry/exit
@router.post("/verify", response_model=VerifyResponse)
async def verify(
    payload: VerifyRequest,
    request: Request,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
):
    participant_id = subject_id(claims)

    if not await allow_request(str(participant_id), "attendance.verify"):
        return JSONResponse(
            status_code=429,
            content={"success": False, "message": "Too many scans. Take a breath and try again 🌿", "error": "rate_limited"},
        )

    try:
        result = await svc.verify_attendance(db, participant_id=participant_id, raw_token=payload.token, now=now)
    except NookError as e:
        if e.status_code >= 500:
            logger.error("verify failed for user %s: %s", participant_id, e.code)
        else:
            logger.info("scan rejected for user %s: %s", participant_id, e.code)
        return JSONResponse(status_code=e.status_code, content=e.to_body())
    except Exception:
        logger.exception("verify crashed for user %s", participant_id)
        return JSONResponse(status_code=500, content=InternalError().to_body())

    try:
        await publish_attendance({
            "meetup_id": str(result.record.meetup_id),
            "user_id": str(participant_id),
            "phase": result.phase.value,
            "status": result.record.status.value,
            "recorded_at": now.isoformat(),
            "idempotency_key": f"{result.record.meetup_id}:{participant_id}:{result.phase.value}",
        })
    except Exception:
        logger.warning("attendance event not published for meetup %s", result.record.meetup_id, exc_info=True)

    return VerifyResponse(success=True, phase=result.phase.value, message=result.message)

# --- 3) Host roster
@router.get("/meetups/{meetup_id}", response_model=list[AttendanceRead])
async def roster(meetup_id: uuid.UUID, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    meetup = await require_meetup(db, meetup_id)
    rows = await svc.list_meetup_records(db, meetup, viewer_id=subject_id(claims))
    return [_read(r) for r in rows]

# --- 4) Participant history
@router.get("/users/me", response_model=list[AttendanceRead])
async def my_attendance(claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    rows = await svc.list_user_records(db, subject_id(claims))
    return [_read(r) for r in rows]

# --- 5) Host roll call during the meetup
@router.post("/meetups/{meetup_id}/mark", response_model=list[AttendanceRead])
async def mark(
    meetup_id: uuid.UUID,
    payload: MarkRequest,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    sink: NotificationSink = Depends(get_notifier),
):
    meetup = await require_meetup(db, meetup_id)
    marks = {m.user_id: AttendanceStatus(m.status) for m in payload.attendances}
    rows = await svc.mark_attendance(db, meetup, host_id=subject_id(claims), marks=marks, now=now, sink=sink)
    return [_read(r) for r in rows]
