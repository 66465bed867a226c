"""
Database-backed fixtures: a fresh schema per test, a UnitOfWork factory,
an in-process HTTP client and small builders for decisions and assumptions.
"""
import httpx
import pytest
import pytest_asyncio

from assumption_service import assumption_service
from clock import clock
from database import AsyncSessionLocal, Base, engine
from decision_service import decision_service
from events import event_bus
from infrastructure.uow import UnitOfWork


@pytest_asyncio.fixture(autouse=True)
async def database():
    import models  # noqa: F401  registers mappers on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    clock.reset()
    yield
    clock.reset()
    # pooled connections must not outlive this test's event loop
    await engine.dispose()


@pytest.fixture
def uow_factory():
    return lambda: UnitOfWork(AsyncSessionLocal)


@pytest.fixture
def bus_events():
    """Events published on the shared bus during the test"""
    subscription = event_bus.subscribe()
    received = []

    def drain() -> list:
        while not subscription.empty():
            received.append(subscription.get_nowait())
        return received

    yield drain
    event_bus.unsubscribe(subscription)


@pytest_asyncio.fixture
async def client():
    from main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest.fixture
def make_decision(uow_factory, member, now):
    async def _make(actor=None, when=None, **data) -> dict:
        data.setdefault("title", "Adopt PostgreSQL for reporting")
        async with uow_factory() as uow:
            return await decision_service.create(uow, data, actor or member, when or now)
    return _make


@pytest.fixture
def make_assumption(uow_factory, member, now):
    async def _make(description: str, when=None, **data) -> dict:
        data["description"] = description
        async with uow_factory() as uow:
            return await assumption_service.create(uow, data, member, when or now)
    return _make


@pytest.fixture
def load_decision(uow_factory):
    """Raw ORM row, read in its own transaction"""
    async def _load(decision_id):
        from decision_service import parse_uuid

        async with uow_factory() as uow:
            return await uow.decisions.get(uow.session, parse_uuid(decision_id, "decision_id"))
    return _load
