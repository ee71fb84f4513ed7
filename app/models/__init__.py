from app.models.organization import Organization
from app.models.professional import Professional, ProfessionalService
from app.models.service import Service
from app.models.client import Client, ClientPublic
from app.models.schedule import ScheduleBlock, WorkingHours
from app.models.slot import Slot, SlotPublic, SlotState
from app.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentOrigin,
    AppointmentPatch,
    AppointmentPublic,
    AppointmentState,
)
from app.models.audit import AuditEvent, AuditKind

__all__ = [
    "Organization",
    "Professional",
    "ProfessionalService",
    "Service",
    "Client",
    "ClientPublic",
    "ScheduleBlock",
    "WorkingHours",
    "Slot",
    "SlotPublic",
    "SlotState",
    "Appointment",
    "AppointmentCreate",
    "AppointmentOrigin",
    "AppointmentPatch",
    "AppointmentPublic",
    "AppointmentState",
    "AuditEvent",
    "AuditKind",
]
