from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.common import _utc_naive_now


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"
    id: int | None = Field(default=None, primary_key=True)
    name: str
    timezone: str | None = None
    active: bool = True
    created_at: datetime = Field(default_factory=_utc_naive_now)
