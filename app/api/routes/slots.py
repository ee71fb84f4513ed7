from datetime import date

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_context
from app.api.schemas.appointment import HoldRequest
from app.core.config import settings
from app.core.context import TenantContext
from app.models.slot import SlotPublic
from app.services import slot_service

router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("", response_model=list[SlotPublic])
async def list_slots(
    date_param: date = Query(..., alias="date"),
    professional_id: int | None = None,
    only_available: bool = False,
    ctx: TenantContext = Depends(get_context),
) -> list[SlotPublic]:
    slots = await slot_service.list_slots(ctx, date_param, professional_id, only_available)
    return [SlotPublic.model_validate(s) for s in slots]


@router.post("/{slot_id}/hold", response_model=SlotPublic)
async def hold_slot(
    slot_id: int, body: HoldRequest | None = None, ctx: TenantContext = Depends(get_context)
) -> SlotPublic:
    """Reserve a slot while the client finishes booking. Binding it later keeps the same slot."""
    minutes = body.minutes if body and body.minutes else settings.slot_hold_minutes
    holder = f"user:{ctx.actor_id}" if ctx.actor_id is not None else "anonymous"
    slot = await slot_service.hold(ctx, slot_id, holder, minutes)
    return SlotPublic.model_validate(slot)
