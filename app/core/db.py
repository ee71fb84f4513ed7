import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy import event, select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from app.core.config import settings
from app.core.context import TenantContext
from app.core.security import Actor
from app.core.timeutils import local_now

logger = logging.getLogger(__name__)


def to_async_url(database_url: str) -> str:
    # asyncpg does not accept psycopg params like sslmode/channel_binding.
    # Convert scheme and strip incompatible query params; SSL is enabled via connect_args.
    parsed = urlparse(database_url)
    if parsed.scheme != "postgresql":
        return database_url
    query = parse_qs(parsed.query, keep_blank_values=True)
    query.pop("sslmode", None)
    query.pop("channel_binding", None)
    new_query = urlencode(query, doseq=True)
    return urlunparse(("postgresql+asyncpg", parsed.netloc, parsed.path, parsed.params, new_query, parsed.fragment))


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """pysqlite defers BEGIN; take it over so SAVEPOINT works (audit writes rely on it)."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = to_async_url(database_url)
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo)
        _enable_sqlite_transactions(engine)
        return engine
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args={"ssl": True} if settings.database_ssl else {},
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url, echo=settings.env == "development")
async_session_maker = build_session_maker(engine)


async def bind_tenant(session: AsyncSession, organization_id: int) -> None:
    """Bind the tenant for row-level security policies (PostgreSQL only)."""
    if session.get_bind().dialect.name != "postgresql":
        return
    await session.execute(
        text("SELECT set_config('app.current_tenant_id', :tenant, true)"),
        {"tenant": str(organization_id)},
    )


async def _organization_timezone(session: AsyncSession, organization_id: int) -> str | None:
    from app.models.organization import Organization

    result = await session.execute(select(Organization.timezone).where(Organization.id == organization_id))
    return result.scalar_one_or_none()


@asynccontextmanager
async def unit_of_work(
    organization_id: int,
    actor: Actor | None = None,
    *,
    now: datetime | None = None,
    ip_address: str | None = None,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[TenantContext]:
    """One transaction scoped to one tenant: commits on success, rolls back on any error."""
    maker = session_maker or async_session_maker
    async with maker() as session:
        async with session.begin():
            await bind_tenant(session, organization_id)
            if now is None:
                now = local_now(await _organization_timezone(session, organization_id))
            ctx = TenantContext(
                session=session, organization_id=organization_id, actor=actor, now=now, ip_address=ip_address
            )
            yield ctx


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create tables if using create_all; prefer Alembic in production."""
    import app.models  # noqa: F401 - register tables

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
