"""
Shared fixtures for the championship engine tests.

Each test gets its own SQLite file: the synchronizer opens several
connections at once (lease, publication), which an in-memory database
shared through one connection cannot model.
"""
from datetime import date, datetime
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from championship.database import build_engine, build_session_factory, get_db, get_session_factory
from championship.main import app
from championship.orm import (
    AttendanceRecord, BadgeDelivery, Base, Championship, ChampionshipStatus, Demerit,
    DuesPayment, Evaluation, Unit,
)
from championship.security.capabilities import admin_caller, counselor_caller, create_caller_token
from championship.services.ranking_synchronizer import RankingSynchronizer
from championship.services.score_catalog import ScoreCatalog


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'championship.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def admin():
    return admin_caller(user_id=1)


@pytest.fixture
def catalog():
    return ScoreCatalog()


@pytest_asyncio.fixture
async def synchronizer(session_factory, catalog):
    return RankingSynchronizer(session_factory, catalog=catalog, timeout_seconds=10)


class Seeder:
    """Writes source rows the way the external systems would."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def championship(
        self,
        status: ChampionshipStatus = ChampionshipStatus.ACTIVE,
        start_date: date = date(2026, 1, 1),
        end_date: date = date(2026, 12, 31),
        name: str = "Championship 2026",
    ) -> Championship:
        return await self._save(Championship(
            name=name,
            year=start_date.year,
            start_date=start_date,
            end_date=end_date,
            status=status.value,
            activated_at=datetime.utcnow() if status != ChampionshipStatus.DRAFT else None,
            closed_at=datetime.utcnow() if status == ChampionshipStatus.CLOSED else None,
        ))

    async def unit(self, name: str, is_active: bool = True, primary_color: Optional[str] = "blue") -> Unit:
        return await self._save(Unit(
            name=name,
            primary_color=primary_color,
            secondary_color="white",
            is_active=is_active,
        ))

    async def attendance(self, unit: Unit, day: date, status: str = "punctual", count: int = 1):
        for i in range(count):
            self.db.add(AttendanceRecord(unit_id=unit.id, member_id=100 + i, meeting_date=day, status=status))
        await self.db.commit()

    async def payment(self, unit: Unit, due_date: date, paid_on: Optional[date]):
        return await self._save(DuesPayment(
            unit_id=unit.id, member_id=1, due_date=due_date, paid_on=paid_on, amount=10
        ))

    async def badge(self, unit: Unit, day: date, count: int = 1):
        for i in range(count):
            self.db.add(BadgeDelivery(unit_id=unit.id, member_id=1, badge_name=f"Badge {i}", delivered_on=day))
        await self.db.commit()

    async def evaluation(self, championship: Championship, unit: Unit, day: date, color: str = "green"):
        return await self._save(Evaluation(
            championship_id=championship.id,
            unit_id=unit.id,
            evaluated_on=day,
            area="weekly",
            evaluation_type="uniform",
            color=color,
        ))

    async def demerit(
        self,
        championship: Championship,
        unit: Unit,
        day: date,
        points: int = -5,
        demerit_type: str = "d1_forgot_materials",
        level: str = "D1",
        description: Optional[str] = None,
    ) -> Demerit:
        return await self._save(Demerit(
            championship_id=championship.id,
            unit_id=unit.id,
            occurred_on=day,
            type=demerit_type,
            level=level,
            points_delta=points,
            description=description,
            created_by=1,
            created_at=datetime.utcnow(),
        ))


@pytest_asyncio.fixture
async def seed(db) -> Seeder:
    return Seeder(db)


# =============================================================================
# HTTP
# =============================================================================

def auth_header(user_id: int, *capabilities: str) -> dict:
    return {"Authorization": f"Bearer {create_caller_token(user_id, capabilities)}"}


@pytest.fixture
def admin_headers():
    return auth_header(1, "admin")


@pytest.fixture
def counselor_headers():
    def _headers(unit_id: int, user_id: int = 7):
        return auth_header(user_id, f"counselor:{unit_id}")
    return _headers


@pytest_asyncio.fixture
async def client(session_factory, synchronizer) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.synchronizer = synchronizer
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        app.state.synchronizer = None


@pytest.fixture
def counselor():
    def _counselor(unit_id: int, user_id: int = 7):
        return counselor_caller(user_id, unit_id)
    return _counselor
