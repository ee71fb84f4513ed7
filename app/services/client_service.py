import logging

from sqlalchemy import select

from app.core.context import TenantContext
from app.core.errors import NotFound, ValidationFailed
from app.models.client import Client

logger = logging.getLogger(__name__)


def normalize_phone(phone: str) -> str:
    return "".join(ch for ch in phone if ch.isdigit() or ch == "+")


async def get_active_client(ctx: TenantContext, client_id: int) -> Client:
    result = await ctx.session.execute(
        select(Client).where(
            Client.id == client_id,
            Client.organization_id == ctx.organization_id,
            Client.active.is_(True),
        )
    )
    client = result.scalar_one_or_none()
    if not client:
        raise NotFound("Client", client_id)
    return client


async def find_by_phone(ctx: TenantContext, phone: str) -> Client | None:
    result = await ctx.session.execute(
        select(Client).where(
            Client.organization_id == ctx.organization_id,
            Client.phone == normalize_phone(phone),
        )
    )
    return result.scalar_one_or_none()


async def get_or_create_by_phone(
    ctx: TenantContext,
    phone: str,
    name: str | None = None,
    email: str | None = None,
    source: str = "manual",
    create_if_missing: bool = True,
) -> tuple[Client, bool]:
    """Returns (client, created). The new record lives in the caller's unit of work."""
    normalized = normalize_phone(phone)
    if not normalized:
        raise ValidationFailed("A phone number is required")
    client = await find_by_phone(ctx, normalized)
    if client:
        if not client.active:
            raise ValidationFailed("Client is inactive")
        return client, False
    if not create_if_missing:
        raise NotFound("Client with phone", normalized)
    client = Client(
        organization_id=ctx.organization_id,
        name=name or f"Client {normalized[-4:]}",
        phone=normalized,
        email=email,
        source=source,
    )
    ctx.session.add(client)
    await ctx.session.flush()
    logger.info("Client created: org=%s client=%s source=%s", ctx.organization_id, client.id, source)
    return client, True
