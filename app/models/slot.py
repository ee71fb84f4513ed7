from datetime import date, datetime, time
from enum import Enum

from sqlmodel import Field, SQLModel

from app.models.common import _utc_naive_now, enum_column


class SlotState(str, Enum):
    AVAILABLE = "available"
    HELD = "temporarily_held"
    OCCUPIED = "occupied"


BINDABLE_SLOT_STATES = (SlotState.AVAILABLE, SlotState.HELD)


class Slot(SQLModel, table=True):
    """A bookable interval of one professional, generated by the schedule template job."""

    __tablename__ = "slots"
    id: int | None = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", index=True)
    professional_id: int = Field(foreign_key="professionals.id", index=True)
    slot_date: date = Field(index=True)
    start_time: time
    end_time: time
    state: SlotState = Field(
        default=SlotState.AVAILABLE,
        sa_column=enum_column(SlotState, "slot_state", nullable=False, index=True),
    )
    version: int = 0
    appointment_id: int | None = Field(default=None, foreign_key="appointments.id", unique=True)
    held_until: datetime | None = None
    held_by: str | None = None
    updated_at: datetime = Field(default_factory=_utc_naive_now)


class SlotPublic(SQLModel):
    id: int
    professional_id: int
    slot_date: date
    start_time: time
    end_time: time
    state: SlotState
    version: int
