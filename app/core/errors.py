"""Error taxonomy of the scheduling core.

Every failure a caller can act on is a ``SchedulingError``. The API layer maps
``status_code`` straight onto the HTTP response.
"""
from typing import Any


class SchedulingError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(SchedulingError):
    status_code = 404

    def __init__(self, entity: str, ident: Any = None) -> None:
        msg = f"{entity} not found or inactive"
        if ident is not None:
            msg = f"{entity} {ident} not found or inactive"
        super().__init__(msg)
        self.entity = entity
        self.ident = ident


class ValidationFailed(SchedulingError):
    """Schedule conflicts, midnight crossing, missing fields.

    ``errors`` keeps the individual issues so callers can render them; the
    message is their aggregation.
    """

    status_code = 422

    def __init__(self, message: str, errors: list | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class Unauthorized(SchedulingError):
    status_code = 403


class Conflict(SchedulingError):
    status_code = 409

    def __init__(self, message: str = "The requested time slot is no longer available") -> None:
        super().__init__(message)


class StateTransitionInvalid(SchedulingError):
    status_code = 409

    def __init__(self, current: Any, target: Any) -> None:
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(f"Cannot move appointment from '{current_value}' to '{target_value}'")
        self.current = current
        self.target = target


class Unavailable(SchedulingError):
    status_code = 409


class TenantIsolationError(RuntimeError):
    """An entity from another organization reached a unit of work. Never expected."""
