import os
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Default DATABASE_URL (not used by tests that use the per-fixture engine)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
from formhub.main import app
from formhub.db.database import Base, dump_json, enable_sqlite_foreign_keys, get_db
from formhub.db.enums import UserRole
from tests.factories import auth_headers, make_tenant, make_user

# Tests use an on-disk SQLite file so the app's request sessions and the
# test session share one database.
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_formhub.db"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
async def test_engine(anyio_backend):
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        json_serializer=dump_json,
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_session(test_engine):
    async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest.fixture
async def client(test_session):
    # Refresh everything loaded in the test session after each response so it
    # sees what the app's request sessions wrote.
    async def _on_response(response):
        for inst in list(test_session.identity_map.values()):
            try:
                # Reload in place; rows the request deleted come back as None
                # and keep their last-loaded state instead of being expired.
                await test_session.get(
                    type(inst), inspect(inst).identity, populate_existing=True
                )
            except Exception:
                # Rows the request deleted
                pass

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        event_hooks={"response": [_on_response]},
    ) as ac:
        yield ac


@pytest.fixture(scope="session", autouse=True)
async def override_get_db_for_app(anyio_backend, test_engine):
    """Point the app's get_db dependency at the session-scoped test engine."""
    async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def _override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
async def clean_tables(anyio_backend, test_engine):
    """Ensure DB is empty before each test by deleting from all tables (keep schema intact)."""
    async with test_engine.begin() as conn:
        # delete in reverse order to respect FK constraints
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield


@pytest.fixture
async def tenant(test_session):
    return await make_tenant(test_session)


@pytest.fixture
async def other_tenant(test_session):
    return await make_tenant(test_session, name="Globex")


@pytest.fixture
async def admin_user(test_session):
    return await make_user(test_session, "admin@example.com", role=UserRole.admin)


@pytest.fixture
async def tenant_user(test_session, tenant):
    return await make_user(test_session, "member@example.com", tenant=tenant)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def user_headers(tenant_user):
    return auth_headers(tenant_user)
