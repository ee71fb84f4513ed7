from datetime import date, time

from sqlmodel import Field, SQLModel


class WorkingHours(SQLModel, table=True):
    """One weekly working window of a professional (weekday: 0=Monday ... 6=Sunday)."""

    __tablename__ = "working_hours"
    id: int | None = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", index=True)
    professional_id: int = Field(foreign_key="professionals.id", index=True)
    weekday: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    label: str | None = None
    valid_from: date | None = None
    valid_until: date | None = None
    accepts_bookings: bool = True
    active: bool = True


class ScheduleBlock(SQLModel, table=True):
    """Vacations, holidays, breaks. No professional means the whole organization."""

    __tablename__ = "schedule_blocks"
    id: int | None = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", index=True)
    professional_id: int | None = Field(default=None, foreign_key="professionals.id", index=True)
    title: str
    date_from: date
    date_to: date
    # Both NULL: blocks the whole day
    start_time: time | None = None
    end_time: time | None = None
    active: bool = True
