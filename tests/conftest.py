import datetime as dt
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from aesthetech_api.app import create_app  # noqa: E402
from aesthetech_api.db.base import Base  # noqa: E402
from aesthetech_api.db.session import get_session  # noqa: E402
from aesthetech_api.models import Client, Product, SalonService, StaffMember  # noqa: E402
from aesthetech_api.observability.loyalty import get_loyalty_store  # noqa: E402
from aesthetech_api.observability.scheduler import get_scheduler_store  # noqa: E402

# Sunday 1 March 2026, before opening hours
FIXED_NOW = dt.datetime(2026, 3, 1, 8, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def fixed_now() -> dt.datetime:
    return FIXED_NOW


@dataclass
class SalonFixture:
    client_id: UUID
    other_client_id: UUID
    staff_id: UUID
    service_id: UUID
    product_id: UUID


@pytest.fixture(autouse=True)
def reset_observability_stores():
    get_loyalty_store().reset()
    get_scheduler_store().reset()
    yield


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def salon(session_factory) -> SalonFixture:
    async with session_factory() as session:
        client = Client(first_name="Ada", last_name="Lovelace", email="ada@example.com")
        other = Client(first_name="Grace", last_name="Hopper", email="grace@example.com")
        staff = StaffMember(first_name="Sam", last_name="Stylist")
        service = SalonService(name="Cut & Colour", price=Decimal("80.00"), duration_minutes=60, loyalty_points=0)
        product = Product(name="Hair Oil", price=Decimal("20.00"), loyalty_points=5)
        session.add_all([client, other, staff, service, product])
        await session.commit()
        return SalonFixture(
            client_id=client.id,
            other_client_id=other.id,
            staff_id=staff.id,
            service_id=service.id,
            product_id=product.id,
        )


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
