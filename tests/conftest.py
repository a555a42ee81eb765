from decimal import Decimal
from typing import List, Optional, Union

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.main import app
from app.core import models
from app.core.database import Base, get_db
from app.ai_feature.errors import ModelCallError
from app.ai_feature.sandbox import SandboxExecutor
from app.ai_feature.service import get_executor, get_model_client, session_registry


class FakeModelClient:
    """
    Stands in for ModelClient. Replies are consumed in order; an exception
    instance in the queue is raised instead of returned.
    """

    def __init__(self, replies: Optional[List[Union[str, Exception]]] = None):
        self.replies = list(replies or [])
        self.calls = []

    def queue(self, *replies: Union[str, Exception]):
        self.replies.extend(replies)

    async def complete(
        self, system_prompt, user_prompt, temperature=0.3, max_tokens=1000, timeout=None
    ):
        self.calls.append({"system": system_prompt, "user": user_prompt})
        if not self.replies:
            raise ModelCallError("no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


# Fresh sqlite file per test, dropped with tmp_path
@pytest_asyncio.fixture(scope="function")
async def db_session(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    TestingSessionLocal = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    async with TestingSessionLocal() as session:
        yield session
        await session.rollback()

    await engine.dispose()


# Same rows the front-end demo data uses
@pytest_asyncio.fixture(scope="function")
async def seeded_db(db_session: AsyncSession):
    db_session.add_all(
        [
            models.Patient(
                patient_id="P001", age=45, gender="Female", diagnosis="Hypertension",
                medications="Lisinopril, Hydrochlorothiazide",
                admission_date="2024-01-15", discharge_date="2024-01-18",
            ),
            models.Patient(
                patient_id="P002", age=62, gender="Male", diagnosis="Diabetes Type 2",
                medications="Metformin, Insulin",
                admission_date="2024-01-20", discharge_date="2024-01-25",
            ),
            models.InventoryItem(
                drug_name="Lisinopril", quantity=15, unit_cost=Decimal("12.50"),
                expiry_date="2025-06-30", supplier="PharmaCorp", category="Cardiovascular",
            ),
            models.InventoryItem(
                drug_name="Metformin", quantity=250, unit_cost=Decimal("8.75"),
                expiry_date="2025-12-31", supplier="MediSupply", category="Diabetes",
            ),
            models.InventoryItem(
                drug_name="Insulin", quantity=5, unit_cost=Decimal("45.00"),
                expiry_date="2024-12-31", supplier="DiabetesCare", category="Diabetes",
            ),
        ]
    )
    await db_session.commit()
    return db_session


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scripts"
    path.mkdir()
    return path


@pytest.fixture
def executor(scratch_dir):
    return SandboxExecutor(str(scratch_dir), timeout_seconds=5)


@pytest.fixture
def fake_model():
    return FakeModelClient()


def _client_with(db_session, executor, model_client):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_executor] = lambda: executor
    app.dependency_overrides[get_model_client] = lambda: model_client
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# Client in fallback mode (no model configured)
@pytest_asyncio.fixture(scope="function")
async def client(seeded_db: AsyncSession, executor):
    async with _client_with(seeded_db, executor, None) as ac:
        yield ac

    app.dependency_overrides.clear()
    session_registry.reset()


# Client wired to the scripted fake model
@pytest_asyncio.fixture(scope="function")
async def model_client(seeded_db: AsyncSession, executor, fake_model):
    async with _client_with(seeded_db, executor, fake_model) as ac:
        yield ac

    app.dependency_overrides.clear()
    session_registry.reset()
