from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.common import _utc_naive_now


class Client(SQLModel, table=True):
    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("organization_id", "phone", name="uq_clients_org_phone"),)
    id: int | None = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", index=True)
    name: str
    phone: str | None = Field(default=None, index=True)
    email: str | None = None
    # walk_in, automated, manual...
    source: str | None = None
    active: bool = True
    created_at: datetime = Field(default_factory=_utc_naive_now)


class ClientPublic(SQLModel):
    id: int
    name: str
    phone: str | None = None
    email: str | None = None
