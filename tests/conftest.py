import itertools
import os
import sys

# Settings are read at import time; point them at an in-memory database first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["CACHE_ENABLED"] = "false"

# Ensure repo root on sys.path for imports like `app...`
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import get_db
from app.main import app
from app.models import Base, ClassModel, Student, StudentStatus

PREV_YEAR = "2023-2024"
YEAR = "2024-2025"
NEXT_YEAR = "2025-2026"

ADMIN_HEADERS = {
    "X-Actor-Id": "admin-1",
    "X-Actor-Permissions": "enrollment:read,enrollment:write",
}
READER_HEADERS = {
    "X-Actor-Id": "viewer-1",
    "X-Actor-Permissions": "enrollment:read",
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_student(db):
    counter = itertools.count(1)

    async def factory(full_name=None, grade_level=10, student_code=None, status=StudentStatus.ACTIVE):
        n = next(counter)
        student = Student(
            student_code=student_code or f"S{n:04d}",
            full_name=full_name or f"Student {n:04d}",
            grade_level=grade_level,
            status=status,
        )
        db.add(student)
        await db.commit()
        return student

    return factory


@pytest.fixture
def make_class(db):
    async def factory(code="10A1", grade_level=10, academic_year=YEAR, maximum_students=30, name=None):
        class_obj = ClassModel(
            code=code,
            name=name or f"Class {code}",
            grade_level=grade_level,
            academic_year=academic_year,
            maximum_students=maximum_students,
            current_students=0,
        )
        db.add(class_obj)
        await db.commit()
        return class_obj

    return factory
