import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("REPORT_EMAILS_ENABLED", "false")

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models.user import User

# StaticPool keeps the single in-memory SQLite connection alive for the whole test.
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    TestSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with TestSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client(db: AsyncSession):
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def seed(db: AsyncSession):
    """Insert records and detach them, so later loads read what is in the database."""
    async def _seed(*records):
        db.add_all(records)
        await db.commit()
        db.expunge_all()
        return records

    return _seed


@pytest_asyncio.fixture
async def fetch(db: AsyncSession):
    """Fresh copy of a row straight from the database."""
    async def _fetch(model, record_id):
        db.expunge_all()
        return await db.get(model, record_id)

    return _fetch


async def _token_for(seed, email: str, role: str) -> str:
    user = User(first_name="Test", last_name="User", email=email, role=role, is_active=True)
    await seed(user)
    return create_access_token(str(user.id))


@pytest_asyncio.fixture
async def admin_token(seed) -> str:
    return await _token_for(seed, "admin@example.com", "admin")


@pytest_asyncio.fixture
async def user_token(seed) -> str:
    return await _token_for(seed, "gardener@example.com", "user")
