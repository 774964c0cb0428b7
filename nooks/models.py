from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, declarative_base, relationship
from sqlalchemy.types import DateTime, Integer

from .core.phase import MeetupStatus

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

def as_utc(dt: datetime | None) -> datetime | None:
    # some drivers (sqlite) hand back naive datetimes even for timezone=True columns
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)

class MemberStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    LEFT = "left"

class AttendanceStatus(str, Enum):
    ATTENDED = "attended"
    NO_SHOW = "no_show"
    PARTIAL_ATTENDANCE = "partial_attendance"

class Meetup(Base):
    __tablename__ = "meetups"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    status: Mapped[MeetupStatus] = mapped_column(SqlEnum(MeetupStatus), default=MeetupStatus.PENDING, nullable=False)

    current_people: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    min_people: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    max_people: Mapped[int] = mapped_column(Integer, default=6, nullable=False)

    host_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    nook_code: Mapped[str | None] = mapped_column(String(16))  # human-entered venue code
    venue_note: Mapped[str | None] = mapped_column(String(255))

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("current_people <= max_people", name="ck_meetups_capacity"),
        CheckConstraint("duration_minutes > 0", name="ck_meetups_duration_pos"),
        Index("ix_meetups_starts", "starts_at"),
        Index("ix_meetups_host", "host_id"),
    )

    memberships: Mapped[list["Membership"]] = relationship(
        "Membership", back_populates="meetup", cascade="all, delete-orphan"
    )

    @property
    def start(self) -> datetime:
        return as_utc(self.starts_at)

class Membership(Base):
    __tablename__ = "memberships"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    meetup_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("meetups.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)

    status: Mapped[MemberStatus] = mapped_column(SqlEnum(MemberStatus), default=MemberStatus.PENDING, nullable=False)
    # free-form on purpose: older rows carry values outside CommitmentStatus
    commitment_status: Mapped[str | None] = mapped_column(String(32))

    # legacy arrival marker, superseded by Attendance
    arrival_status: Mapped[str | None] = mapped_column(String(32))
    arrival_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # join order, used as the failover tie-break
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("meetup_id", "user_id", name="uq_membership_meetup_user"),
        Index("ix_memberships_meetup", "meetup_id"),
        Index("ix_memberships_user", "user_id"),
    )

    meetup: Mapped[Meetup] = relationship("Meetup", back_populates="memberships")

class Attendance(Base):
    __tablename__ = "attendance"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    meetup_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("meetups.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)

    status: Mapped[AttendanceStatus] = mapped_column(
        SqlEnum(AttendanceStatus), default=AttendanceStatus.ATTENDED, nullable=False
    )
    entry_marked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    entry_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    exit_marked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    exit_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("meetup_id", "user_id", name="uq_attendance_meetup_user"),
        Index("ix_attendance_meetup", "meetup_id"),
        Index("ix_attendance_user", "user_id"),
    )
