from app.core.errors import StateTransitionInvalid
from app.models.appointment import AppointmentState

_S = AppointmentState

# pending as a target is only reached through reschedule
TRANSITIONS: dict[AppointmentState, frozenset[AppointmentState]] = {
    _S.PENDING: frozenset({_S.CONFIRMED, _S.IN_PROGRESS, _S.CANCELLED, _S.NO_SHOW, _S.PENDING}),
    _S.CONFIRMED: frozenset({_S.IN_PROGRESS, _S.CANCELLED, _S.NO_SHOW, _S.PENDING}),
    _S.IN_PROGRESS: frozenset({_S.COMPLETED, _S.PENDING}),
    _S.COMPLETED: frozenset(),
    _S.CANCELLED: frozenset(),
    _S.NO_SHOW: frozenset(),
}


def can_transition(current: AppointmentState, target: AppointmentState) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: AppointmentState, target: AppointmentState) -> None:
    if not can_transition(current, target):
        raise StateTransitionInvalid(current, target)


def is_terminal(state: AppointmentState) -> bool:
    return not TRANSITIONS[state]
