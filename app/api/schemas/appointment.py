from pydantic import BaseModel


class CancelRequest(BaseModel):
    reason: str | None = None


class NoShowRequest(BaseModel):
    reason: str | None = None


class HoldRequest(BaseModel):
    minutes: int | None = None
