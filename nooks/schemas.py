from __future__ import annotations
from pydantic import BaseModel, ConfigDict
from typing import Any, Literal
from uuid import UUID
from datetime import datetime

class AttendanceToken(BaseModel):
    meetup_id: str
    phase: Literal["entry", "exit"]
    issued_at: int   # epoch millis
    expires_at: int  # epoch millis
    signature: str

class TokenCreate(BaseModel):
    meetup_id: UUID
    phase: Literal["entry", "exit"] | None = None  # default: whichever window is open

class TokenCreateResponse(BaseModel):
    token: AttendanceToken
    qr_text: str  # what the host screen encodes as a QR code

class VerifyRequest(BaseModel):
    # any shape; the verifier reports malformed tokens itself
    token: Any = None

class VerifyResponse(BaseModel):
    success: bool
    phase: Literal["entry", "exit"] | None = None
    message: str
    error: str | None = None

class AttendanceMark(BaseModel):
    user_id: UUID
    status: Literal["attended", "no_show"]

class MarkRequest(BaseModel):
    attendances: list[AttendanceMark]

class AttendanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    meetup_id: UUID
    user_id: UUID
    status: str
    entry_marked: bool
    entry_time: datetime | None = None
    exit_marked: bool
    exit_time: datetime | None = None

class PhaseRead(BaseModel):
    meetup_id: UUID
    starts_at: datetime
    duration_minutes: int
    phase: str
    label: str
    commitment_phase: str
    scan_phase: Literal["entry", "exit"] | None = None
    next_change_at: datetime | None = None

class CommitmentUpdate(BaseModel):
    status: Literal["confirmed", "unsure", "cancelled", "on_the_way", "running_late", "no_show"]
    user_id: UUID | None = None  # service principals only

class FailoverRead(BaseModel):
    new_host_id: UUID | None = None
    meetup_cancelled: bool

class CommitmentRead(BaseModel):
    meetup_id: UUID
    user_id: UUID
    commitment_status: str
    commitment_phase: str
    message: str
    failover: FailoverRead | None = None

class ReadinessRead(BaseModel):
    meetup_id: UUID
    commitment_phase: str
    counts: dict[str, int]

class ArrivalsRead(BaseModel):
    meetup_id: UUID
    arrived_count: int
    arrived_user_ids: list[UUID] | None = None  # withheld below the disclosure threshold

class MeetupRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    starts_at: datetime
    duration_minutes: int
    status: str
    host_id: UUID
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
