"""
Pytest configuration and shared fixtures.

Every test gets its own file-backed SQLite database. The clock is fixed at
Monday 2026-03-02 10:05 local time unless a test passes another ``now``.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_SSL", "false")
os.environ.setdefault("ENV", "test")

from contextlib import asynccontextmanager  # noqa: E402
from datetime import datetime, time  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402

from app.core.db import build_engine, build_session_maker, init_db, unit_of_work  # noqa: E402
from app.core.security import Actor, Role  # noqa: E402
from app.models import (  # noqa: E402
    Client,
    Organization,
    Professional,
    ProfessionalService,
    Service,
    WorkingHours,
)
from app.services import appointment_service  # noqa: E402
from factories import NOW, Seed  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture(autouse=True)
def reset_completion_hooks():
    yield
    appointment_service.clear_completion_hooks()


@pytest.fixture
def uow(session_maker):
    """unit_of_work bound to the test database, with the fixed clock by default."""

    @asynccontextmanager
    async def _uow(organization_id: int, actor: Actor | None = None, now: datetime | None = None):
        async with unit_of_work(
            organization_id, actor, now=now or NOW, ip_address="127.0.0.1", session_maker=session_maker
        ) as ctx:
            yield ctx

    return _uow


@pytest.fixture
async def seed(session_maker) -> Seed:
    """Two tenants. Ana and Luis (org A) work 08:00-20:00 every day and perform both services."""
    async with session_maker() as session:
        async with session.begin():
            org = Organization(name="Barber A", timezone="America/Mexico_City")
            other = Organization(name="Barber B", timezone="America/Mexico_City")
            session.add_all([org, other])
            await session.flush()

            ana = Professional(organization_id=org.id, full_name="Ana", color="#f00")
            luis = Professional(organization_id=org.id, full_name="Luis", color="#0f0")
            stranger = Professional(organization_id=other.id, full_name="Other")
            haircut = Service(organization_id=org.id, name="Haircut", duration_minutes=30, price=Decimal("150.00"))
            beard = Service(organization_id=org.id, name="Beard trim", duration_minutes=20, price=Decimal("100.00"))
            session.add_all([ana, luis, stranger, haircut, beard])
            await session.flush()

            for professional in (ana, luis):
                for service in (haircut, beard):
                    session.add(
                        ProfessionalService(
                            organization_id=org.id, professional_id=professional.id, service_id=service.id
                        )
                    )
                for weekday in range(7):
                    session.add(
                        WorkingHours(
                            organization_id=org.id,
                            professional_id=professional.id,
                            weekday=weekday,
                            start_time=time(8, 0),
                            end_time=time(20, 0),
                        )
                    )

            client = Client(organization_id=org.id, name="Maria", phone="5550001111", source="manual")
            other_client = Client(organization_id=org.id, name="Pedro", phone="5550002222", source="manual")
            session.add_all([client, other_client])
            await session.flush()

            return Seed(
                org_id=org.id,
                other_org_id=other.id,
                ana_id=ana.id,
                luis_id=luis.id,
                haircut_id=haircut.id,
                beard_id=beard.id,
                client_id=client.id,
                client_phone=client.phone,
                other_client_id=other_client.id,
                other_org_professional_id=stranger.id,
            )


@pytest.fixture
def admin(seed) -> Actor:
    return Actor(user_id=1, organization_id=seed.org_id, role=Role.ADMIN)


@pytest.fixture
def ana_employee(seed) -> Actor:
    return Actor(user_id=2, organization_id=seed.org_id, role=Role.EMPLOYEE, professional_id=seed.ana_id)


@pytest.fixture
def luis_employee(seed) -> Actor:
    return Actor(user_id=3, organization_id=seed.org_id, role=Role.EMPLOYEE, professional_id=seed.luis_id)


@pytest.fixture
def client_actor(seed) -> Actor:
    return Actor(user_id=4, organization_id=seed.org_id, role=Role.CLIENT, client_id=seed.client_id)


@pytest.fixture
def bot(seed) -> Actor:
    return Actor(user_id=None, organization_id=seed.org_id, role=Role.BOT)
