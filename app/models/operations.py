from datetime import date, datetime, time
from decimal import Decimal

from sqlmodel import SQLModel

from app.models.appointment import AppointmentPublic, AppointmentState


class ProfessionalAvailability(SQLModel):
    professional_id: int
    full_name: str
    available_now: bool
    appointments_today: int
    # Busy professionals can still queue a walk-in; idle ones outside their hours cannot
    in_service: bool = False
    on_duty: bool = True


class QueueEntry(SQLModel):
    appointment_id: int
    code: str
    professional_id: int
    client_name: str
    state: AppointmentState
    start_time: time
    arrived_at: datetime
    minutes_waiting: int
    position: int


class WaitingQueue(SQLModel):
    entries: list[QueueEntry]
    total_waiting: int
    average_wait_minutes: float


class DailyCounters(SQLModel):
    total: int = 0
    completed: int = 0
    cancelled: int = 0
    no_show: int = 0
    in_progress: int = 0
    walk_ins: int = 0
    revenue: Decimal = Decimal("0")


class DashboardToday(SQLModel):
    day: date
    professional_id: int | None = None
    appointments: list[AppointmentPublic]
    counters: DailyCounters


class WalkInResult(SQLModel):
    appointment: AppointmentPublic
    queued: bool
    estimated_wait_minutes: int
    warnings: list[str] = []
