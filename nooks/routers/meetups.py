from __future__ import annotations
import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_claims, get_now, get_notifier, is_service, subject_id
from ..core.commitment import CommitmentStatus, commitment_phase
from ..core.config import get_settings
from ..core.phase import compute_phase, next_phase_change
from ..core.windows import active_scan_phase
from ..schemas import ArrivalsRead, CommitmentRead, CommitmentUpdate, FailoverRead, MeetupRead, PhaseRead, ReadinessRead
from ..services.commitment import change_commitment
from ..services.meetups import cancel_meetup, require_meetup
from ..services.notify import NotificationSink
from ..services import readiness as readiness_svc

settings = get_settings()
router = APIRouter(prefix="/meetups", tags=["meetups"])

@router.get("/{meetup_id}/phase", response_model=PhaseRead)
async def meetup_phase(
    meetup_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
):
    m = await require_meetup(db, meetup_id)
    info = compute_phase(m.start, m.duration_minutes, m.status.value, now)
    scan = active_scan_phase(m.start, m.duration_minutes, now)
    return PhaseRead(
        meetup_id=m.id,
        starts_at=m.start,
        duration_minutes=m.duration_minutes,
        phase=info.phase.value,
        label=info.label,
        commitment_phase=commitment_phase(m.start, m.duration_minutes, now).value,
        scan_phase=scan.value if scan else None,
        next_change_at=next_phase_change(m.start, m.duration_minutes, m.status.value, now),
    )

@router.put("/{meetup_id}/commitment", response_model=CommitmentRead)
async def update_commitment(
    meetup_id: uuid.UUID,
    payload: CommitmentUpdate,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    sink: NotificationSink = Depends(get_notifier),
):
    system = is_service(claims)
    if payload.user_id is not None and not system:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only service principals may update others")
    user_id = payload.user_id if system and payload.user_id else subject_id(claims)

    m = await require_meetup(db, meetup_id)
    outcome = await change_commitment(
        db, m, user_id=user_id, target=CommitmentStatus(payload.status), now=now, sink=sink, system=system,
    )
    failover = None
    if outcome.failover is not None:
        failover = FailoverRead(new_host_id=outcome.failover.new_host_id, meetup_cancelled=outcome.failover.cancelled)
    # rows may be expired if failover rolled back; answer from what was committed
    return CommitmentRead(
        meetup_id=meetup_id,
        user_id=user_id,
        commitment_status=outcome.status,
        commitment_phase=outcome.phase.value,
        message=outcome.message,
        failover=failover,
    )

@router.get("/{meetup_id}/readiness", response_model=ReadinessRead)
async def group_readiness(
    meetup_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
):
    m = await require_meetup(db, meetup_id)
    phase, counts = await readiness_svc.readiness(db, m, now=now)
    return ReadinessRead(meetup_id=m.id, commitment_phase=phase.value, counts=counts)

@router.get("/{meetup_id}/arrivals", response_model=ArrivalsRead)
async def arrivals(
    meetup_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
):
    m = await require_meetup(db, meetup_id)
    count, ids = await readiness_svc.arrivals(
        db, m, viewer_id=subject_id(claims), now=now, threshold=settings.arrival_disclosure_threshold,
    )
    return ArrivalsRead(meetup_id=m.id, arrived_count=count, arrived_user_ids=ids)

@router.post("/{meetup_id}/cancel", response_model=MeetupRead)
async def cancel(
    meetup_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    sink: NotificationSink = Depends(get_notifier),
):
    m = await require_meetup(db, meetup_id)
    m = await cancel_meetup(db, m, actor_id=subject_id(claims), now=now, sink=sink)
    return MeetupRead(
        id=m.id, title=m.title, starts_at=m.start, duration_minutes=m.duration_minutes,
        status=m.status.value, host_id=m.host_id, cancelled_at=m.cancelled_at, cancelled_by=m.cancelled_by,
    )
