import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CACHE_PROVIDER", "memory")
os.environ.setdefault("EVENT_BUS_PROVIDER", "noop")
os.environ.setdefault("STORE_TIMEOUT_SECONDS", "10")

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from disclosure.core.base import Base
from disclosure.core.cache import MemoryCache
from disclosure.core.db import import_models
from disclosure.modules.information_requests.service import InformationRequestService
from disclosure.modules.users.models import User, CaregiverProfile


@pytest.fixture
async def engine(tmp_path):
    import_models()
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'disclosure.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def cache():
    return MemoryCache(ttl=30)


@pytest.fixture
async def users(session_factory):
    """u1 is a parent, u2 a caregiver with a full profile, u3 another parent."""
    async with session_factory() as s:
        s.add_all([
            User(id="u1", name="Ana Reyes", email="ana@example.com", phone="+63 917 555 0101", role="parent"),
            User(id="u2", name="Bea Santos", email="bea@example.com", phone="+63 917 555 0202",
                 address="12 Mabini St, Makati", profile_image="https://cdn.example.com/u2.jpg", role="caregiver"),
            User(id="u3", name="Carlo Cruz", role="parent"),
        ])
        await s.flush()
        s.add(CaregiverProfile(
            user_id="u2",
            background_check_status="cleared",
            emergency_contacts=[{"name": "Lito Santos", "phone": "+63 917 555 0303"}],
            age_care_ranges=["infant", "toddler"],
            languages=["en", "fil"],
            documents=[
                {"id": "d1", "type": "image/jpeg", "fileName": "cpr-card.jpg", "verified": True},
                {"id": "d2", "type": "application/pdf", "fileName": "nbi-clearance.pdf", "status": "verified"},
                {"id": "d3", "fileName": "intro.mp4"},
            ],
        ))
        await s.commit()
    return ["u1", "u2", "u3"]


@pytest.fixture
def service(session, cache, users):
    return InformationRequestService(session, cache)
