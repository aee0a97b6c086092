import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import timedelta
from uuid import UUID, uuid4

# Tests run against a throwaway SQLite database; settings are read on import
_TEST_DIR = tempfile.mkdtemp(prefix="clinic-scheduling-tests-")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Values already set above win over .env
load_dotenv()

from app.core.events import EventEmitter
from app.core.locks import BookingLocks
from app.core.security import create_access_token
from app.database import get_db
from app.dependencies import get_cache_manager
from app.main import app
from app.models import metadata
from app.models.users import users
from app.schemas.users import Caller, UserRole

# Use NullPool so every session gets its own SQLite connection
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on freshly created tables."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for extra sessions, used to simulate concurrent requests."""
    return TestSessionLocal


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client with Redis caching disabled."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache_manager] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def locks() -> BookingLocks:
    """Fresh booking lock registry for one test."""
    return BookingLocks()


@pytest.fixture
def recorded_events() -> list:
    """List that collects every event emitted through ``emitter``."""
    return []


@pytest.fixture
def emitter(recorded_events: list) -> EventEmitter:
    """Event emitter that records events instead of logging them."""
    emitter = EventEmitter()
    emitter.subscribe(recorded_events.append)
    return emitter


UserFactory = Callable[..., Awaitable[dict]]


@pytest.fixture
def make_user(db_session: AsyncSession) -> UserFactory:
    """Insert a user with the given role and return its row data."""

    async def _make_user(role: UserRole, is_active: bool = True, **overrides) -> dict:
        user_id = uuid4()
        user_data = {
            "id": user_id,
            "email": f"{role.value}-{user_id.hex[:8]}@example.com",
            "full_name": f"Test {role.value.capitalize()}",
            "role": role.value,
            "is_active": is_active,
        }
        user_data.update(overrides)

        await db_session.execute(insert(users).values(**user_data))
        await db_session.commit()
        return user_data

    return _make_user


@pytest_asyncio.fixture
async def patient(make_user: UserFactory) -> dict:
    """An active patient."""
    return await make_user(UserRole.PATIENT, full_name="Pat Patient")


@pytest_asyncio.fixture
async def other_patient(make_user: UserFactory) -> dict:
    """A second active patient."""
    return await make_user(UserRole.PATIENT, full_name="Quinn Patient")


@pytest_asyncio.fixture
async def doctor(make_user: UserFactory) -> dict:
    """An active doctor."""
    return await make_user(UserRole.DOCTOR, full_name="Dana Doctor")


@pytest_asyncio.fixture
async def admin(make_user: UserFactory) -> dict:
    """An active administrator."""
    return await make_user(UserRole.ADMIN, full_name="Avery Admin")


def as_caller(user: dict) -> Caller:
    """Build the scheduling identity for a user row."""
    return Caller(id=user["id"], role=UserRole(user["role"]))


@pytest.fixture
def patient_caller(patient: dict) -> Caller:
    return as_caller(patient)


@pytest.fixture
def other_patient_caller(other_patient: dict) -> Caller:
    return as_caller(other_patient)


@pytest.fixture
def doctor_caller(doctor: dict) -> Caller:
    return as_caller(doctor)


@pytest.fixture
def admin_caller(admin: dict) -> Caller:
    return as_caller(admin)


def auth_headers_for(user_id: UUID) -> dict:
    """Create authentication headers for a user."""
    token = create_access_token(data={"sub": str(user_id)}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def patient_headers(patient: dict) -> dict:
    return auth_headers_for(patient["id"])


@pytest.fixture
def other_patient_headers(other_patient: dict) -> dict:
    return auth_headers_for(other_patient["id"])


@pytest.fixture
def doctor_headers(doctor: dict) -> dict:
    return auth_headers_for(doctor["id"])


@pytest.fixture
def admin_headers(admin: dict) -> dict:
    return auth_headers_for(admin["id"])
