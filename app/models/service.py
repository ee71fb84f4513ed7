from decimal import Decimal

from sqlmodel import Field, SQLModel


class Service(SQLModel, table=True):
    __tablename__ = "services"
    id: int | None = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", index=True)
    name: str
    duration_minutes: int = 30
    price: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    active: bool = True
