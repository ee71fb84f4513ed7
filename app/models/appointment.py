from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum

from pydantic import ConfigDict
from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.client import ClientPublic
from app.models.common import _utc_naive_now, enum_column


class AppointmentState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


TERMINAL_STATES = frozenset({AppointmentState.COMPLETED, AppointmentState.CANCELLED, AppointmentState.NO_SHOW})
# States that never occupy the professional's timeline
INACTIVE_STATES = (AppointmentState.CANCELLED, AppointmentState.NO_SHOW)


class AppointmentOrigin(str, Enum):
    STANDARD = "standard"
    AUTOMATED = "automated"
    WALK_IN = "walk_in"


class Shift(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    ANY = "any"


class Appointment(SQLModel, table=True):
    """Aggregate root. Never deleted: cancellation is a terminal state.

    Scheduling fields and arrival/start/end timestamps are local wall-clock
    time of the organization; created_at/updated_at are naive UTC.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_appointments_no_midnight_crossing"),
        CheckConstraint("rating IS NULL OR rating BETWEEN 1 AND 5", name="ck_appointments_rating"),
        UniqueConstraint("organization_id", "code", name="uq_appointments_org_code"),
    )
    id: int | None = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", index=True)
    code: str = Field(index=True)
    client_id: int = Field(foreign_key="clients.id", index=True)
    professional_id: int = Field(foreign_key="professionals.id", index=True)
    service_id: int = Field(foreign_key="services.id", index=True)
    appointment_date: date = Field(index=True)
    start_time: time
    end_time: time
    state: AppointmentState = Field(
        default=AppointmentState.PENDING,
        sa_column=enum_column(AppointmentState, "appointment_state", nullable=False, index=True),
    )
    price: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    final_price: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    paid: bool = False
    payment_method: str | None = None
    confirmation_required: bool = True
    confirmed_by_client: bool = False
    confirmed_at: datetime | None = None
    reminder_sent: bool = False
    reminder_sent_at: datetime | None = None
    arrived_at: datetime | None = None
    actual_start_at: datetime | None = None
    actual_end_at: datetime | None = None
    cancellation_reason: str | None = None
    rating: int | None = None
    rating_comment: str | None = None
    client_notes: str | None = None
    professional_notes: str | None = None
    internal_notes: str | None = None
    created_by: int | None = None
    ip_address: str | None = None
    origin: AppointmentOrigin = Field(
        default=AppointmentOrigin.STANDARD,
        sa_column=enum_column(AppointmentOrigin, "appointment_origin", nullable=False),
    )
    created_at: datetime = Field(default_factory=_utc_naive_now)
    updated_at: datetime = Field(default_factory=_utc_naive_now)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.end_time)


class AppointmentCreate(SQLModel):
    client_id: int
    professional_id: int
    service_id: int
    appointment_date: date
    start_time: time
    # Defaults to start_time + service duration
    end_time: time | None = None
    discount: Decimal = Decimal("0")
    client_notes: str | None = None
    internal_notes: str | None = None
    confirmation_required: bool = True
    # Registry slot to bind; when omitted a slot covering the interval is bound if one exists
    slot_id: int | None = None
    slot_version: int | None = None


class AppointmentPatch(SQLModel):
    """The only fields an update may touch. State moves go through the transitions."""

    model_config = ConfigDict(extra="forbid")

    professional_id: int | None = None
    service_id: int | None = None
    appointment_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    price: Decimal | None = Field(default=None, ge=0)
    discount: Decimal | None = Field(default=None, ge=0)
    payment_method: str | None = None
    paid: bool | None = None
    client_notes: str | None = None
    professional_notes: str | None = None
    internal_notes: str | None = None
    rating: int | None = Field(default=None, ge=1, le=5)
    rating_comment: str | None = None

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}

    @property
    def touches_schedule(self) -> bool:
        return bool(
            self.model_fields_set & {"professional_id", "appointment_date", "start_time", "end_time", "service_id"}
        )


class RescheduleRequest(SQLModel):
    new_date: date
    new_start_time: time
    # Defaults to keeping the current duration
    new_end_time: time | None = None
    reason: str | None = None


class CompletionRequest(SQLModel):
    final_price: Decimal | None = Field(default=None, ge=0)
    payment_method: str | None = None
    # None means "not overridden": paid is derived from the final price
    paid: bool | None = None
    notes: str | None = None


class WalkInCreate(SQLModel):
    service_id: int
    professional_id: int | None = None
    client_id: int | None = None
    client_name: str | None = None
    client_phone: str | None = None
    notes: str | None = None


class AutomatedBookingCreate(SQLModel):
    service_id: int
    client_phone: str
    client_name: str | None = None
    client_email: str | None = None
    # 'today', 'tomorrow' or an ISO date
    requested_date: str = "tomorrow"
    shift: Shift = Shift.ANY
    preferred_professional_id: int | None = None
    create_client_if_missing: bool = True
    discount: Decimal = Decimal("0")
    internal_notes: str | None = None


class AutomatedModification(SQLModel):
    new_date: str | None = None
    new_shift: Shift | None = None
    new_service_id: int | None = None
    reason: str | None = None


class AppointmentPublic(SQLModel):
    id: int
    code: str
    client_id: int
    professional_id: int
    service_id: int
    appointment_date: date
    start_time: time
    end_time: time
    state: AppointmentState
    origin: AppointmentOrigin
    price: Decimal
    discount: Decimal
    final_price: Decimal
    paid: bool
    payment_method: str | None = None
    confirmed_by_client: bool
    arrived_at: datetime | None = None
    actual_start_at: datetime | None = None
    actual_end_at: datetime | None = None
    cancellation_reason: str | None = None
    rating: int | None = None
    created_at: datetime


class AutomatedBookingResult(SQLModel):
    appointment: AppointmentPublic
    client: ClientPublic
    client_created: bool
    professional_id: int
    professional_name: str
    service_name: str
    duration_minutes: int
    confirmation_message: str
