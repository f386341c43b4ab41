"""Async test fixtures for collector tests using SQLite."""

from __future__ import annotations

import base64
import hashlib
import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from collector.database import get_db
from collector.deps import get_admission_pipeline
from collector.models.base import Base
from collector.models.form import Form
from collector.models.organization import Organization
from collector.security.challenge import ChallengeConfig
from collector.security.csrf import CsrfConfig
from collector.security.throttle import ThrottleStore
from collector.services.admission_svc import AdmissionConfig, AdmissionPipeline

CSRF_SECRET = "test-csrf-secret"
ALTCHA_KEY = "test-altcha-key"
ORIGIN = "https://site.example"
START_TIME = 1_700_000_000.0


class FakeClock:
    """Controllable replacement for ``time.time``."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def encode_solution(challenge: dict, number: int | None = None, /, **overrides) -> str:
    """Build the base64 JSON payload a widget submits for ``challenge``."""
    if number is None:
        number = next(
            n
            for n in range(challenge["maxnumber"] + 1)
            if hashlib.sha256(f"{challenge['salt']}{n}".encode()).hexdigest()
            == challenge["challenge"]
        )
    data = {
        "algorithm": challenge["algorithm"],
        "challenge": challenge["challenge"],
        "number": number,
        "salt": challenge["salt"],
        "signature": challenge["signature"],
    }
    data.update(overrides)
    return base64.b64encode(json.dumps(data).encode()).decode()


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def csrf_config():
    return CsrfConfig(secret=CSRF_SECRET, ttl_seconds=900)


@pytest.fixture
def challenge_config():
    return ChallengeConfig(hmac_key=ALTCHA_KEY, max_number=1000, ttl_seconds=600)


@pytest.fixture
def throttle(clock):
    return ThrottleStore(shards=8, clock=clock)


@pytest.fixture
def admission_config(csrf_config, challenge_config):
    return AdmissionConfig(csrf=csrf_config, challenge=challenge_config)


@pytest.fixture
def pipeline(admission_config, throttle, clock):
    return AdmissionPipeline(admission_config, throttle, clock=clock)


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def organization(db: AsyncSession):
    org = Organization(name="Acme", slug="acme")
    db.add(org)
    await db.commit()
    await db.refresh(org)
    return org


@pytest_asyncio.fixture
async def form(db: AsyncSession, organization: Organization):
    f = Form(
        organization_id=organization.id,
        name="Contact",
        slug="contact",
        submit_hash="hash-contact-0001",
        csrf_enabled=False,
    )
    db.add(f)
    await db.commit()
    await db.refresh(f)
    return f


@pytest_asyncio.fixture
async def csrf_form(db: AsyncSession, organization: Organization):
    f = Form(
        organization_id=organization.id,
        name="Protected",
        slug="protected",
        submit_hash="hash-protected-01",
        csrf_enabled=True,
    )
    db.add(f)
    await db.commit()
    await db.refresh(f)
    return f


@pytest_asyncio.fixture
async def client(engine, pipeline):
    """HTTPX async test client against the collector app."""
    from collector.app import app

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_admission_pipeline] = lambda: pipeline

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
