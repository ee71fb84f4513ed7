from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class Professional(SQLModel, table=True):
    __tablename__ = "professionals"
    id: int | None = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", index=True)
    full_name: str
    color: str | None = None
    active: bool = True


class ProfessionalService(SQLModel, table=True):
    """Certification: the professional may perform the service."""

    __tablename__ = "professional_services"
    __table_args__ = (UniqueConstraint("professional_id", "service_id", name="uq_professional_service"),)
    id: int | None = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", index=True)
    professional_id: int = Field(foreign_key="professionals.id", index=True)
    service_id: int = Field(foreign_key="services.id", index=True)
