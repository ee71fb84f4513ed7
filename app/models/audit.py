from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from app.models.common import _utc_naive_now


class AuditKind(str, Enum):
    APPOINTMENT_CREATED = "appointment_created"
    AUTOMATED_CREATED = "appointment_created_automated"
    WALK_IN_CREATED = "appointment_walk_in_created"
    APPOINTMENT_UPDATED = "appointment_updated"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    CHECKED_IN = "appointment_checked_in"
    SERVICE_STARTED = "appointment_started"
    COMPLETED = "appointment_completed"
    CANCELLED = "appointment_cancelled"
    NO_SHOW = "appointment_no_show"
    RESCHEDULED = "appointment_rescheduled"
    AUTOMATED_MODIFIED = "appointment_modified_automated"
    AUTOMATED_CANCELLED = "appointment_cancelled_automated"
    REMINDER_SENT = "appointment_reminder_sent"
    SLOT_HELD = "slot_held"


class AuditEvent(SQLModel, table=True):
    """Append-only. Rows are never updated."""

    __tablename__ = "audit_events"
    id: int | None = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", index=True)
    kind: str = Field(index=True)
    description: str | None = None
    appointment_id: int | None = Field(default=None, foreign_key="appointments.id", index=True)
    actor_id: int | None = None
    details: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=_utc_naive_now)


class AuditEventPublic(SQLModel):
    id: int
    kind: str
    description: str | None = None
    appointment_id: int | None = None
    actor_id: int | None = None
    details: dict
    created_at: datetime
