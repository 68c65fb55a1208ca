from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rewardly_api.app import create_app
from rewardly_api.db.base import Base
from rewardly_api.db.session import get_session
from rewardly_api.models.customer_profile import CustomerProfile
from rewardly_api.models.seller import SellerDailyOffer, SellerProfile
from rewardly_api.observability.loyalty import get_loyalty_store


@pytest.fixture(autouse=True)
def reset_loyalty_store():
    store = get_loyalty_store()
    store.reset()
    yield store
    store.reset()


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
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions use separate connections."""

    database_path = tmp_path / "loyalty.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{database_path}",
        future=True,
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


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


async def create_seller(session: AsyncSession, seller_id: str = "seller-1", **overrides: Any) -> SellerProfile:
    values: dict[str, Any] = {
        "id": seller_id,
        "shop_name": "Chai Point",
        "reward_config": {"reward_type": "flat", "flat_points": 10},
    }
    values.update(overrides)
    seller = SellerProfile(**values)
    session.add(seller)
    await session.commit()
    return seller


async def create_offers(session: AsyncSession, seller_id: str, *titles: str) -> list[SellerDailyOffer]:
    offers = [
        SellerDailyOffer(seller_id=seller_id, offer_id=f"offer-{index}", title=title)
        for index, title in enumerate(titles, start=1)
    ]
    session.add_all(offers)
    await session.commit()
    return offers


async def create_customer(session: AsyncSession, user_id: str = "user-1", **overrides: Any) -> CustomerProfile:
    customer = CustomerProfile(id=user_id, **overrides)
    session.add(customer)
    await session.commit()
    return customer


@pytest.fixture
def seed():
    """Helpers for seeding sellers, perks and customers."""

    class _Seed:
        seller = staticmethod(create_seller)
        offers = staticmethod(create_offers)
        customer = staticmethod(create_customer)

    return _Seed
