"""Pytest configuration and fixtures for the group formation tests.

Provides an in-memory database, an authenticated API client, record
factories for the pure pipeline stages, and a seeder for database tests.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import date
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (register tables on Base.metadata)
from app.auth.jwt import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models.cluster import Cluster, RiceVariety, Season
from app.models.farmer import Farmer, Plot, PlotCultivation
from app.models.supervisor import Supervisor
from app.schemas.grouping import GroupingParameters
from app.services.grouping.types import PlotRecord

CLUSTER_ID = "cluster-1"
SEASON_ID = "season-ws"
YEAR = 2024
JASMINE = "v-jasmine"
ST25 = "v-st25"

BASE_LON, BASE_LAT = 105.0, 10.0
STEP = 0.0001  # ~11 m at this latitude


def square_wkt(lon: float, lat: float, half: float = 0.00004) -> str:
    return (
        f"POLYGON(({lon - half} {lat - half}, {lon + half} {lat - half}, "
        f"{lon + half} {lat + half}, {lon - half} {lat + half}, {lon - half} {lat - half}))"
    )


def grid_point(x: float, y: float) -> tuple[float, float]:
    return BASE_LON + x * STEP, BASE_LAT + y * STEP


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with session_factory() as session:
        yield session

        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Auth Fixtures ────────────────────────────────────────────────

@pytest.fixture
def test_token() -> str:
    return create_access_token(
        user_id="user-manager",
        role="cluster_manager",
        permissions=["group.read", "group.write"],
        cluster_id=CLUSTER_ID,
    )


@pytest.fixture
def auth_headers(test_token: str) -> dict:
    """Create authorization headers with test token."""
    return {"Authorization": f"Bearer {test_token}"}


@pytest.fixture
def read_only_headers() -> dict:
    token = create_access_token(
        user_id="user-expert", role="expert", permissions=["plot.read"],
    )
    return {"Authorization": f"Bearer {token}"}


# ── Pure pipeline fixtures ───────────────────────────────────────

@pytest.fixture
def params():
    """Parameters used by most scenarios; override with model_copy(update=...)."""
    return GroupingParameters(
        proximity_threshold=100.0,
        planting_date_tolerance=3,
        min_group_area=0.0,
        max_group_area=50.0,
        min_plots_per_group=3,
        max_plots_per_group=10,
        undersized_policy="flag",
        suggestion_radius=5000.0,
    )


@pytest.fixture
def make_record():
    """Factory for PlotRecords laid out on a ~11 m grid around (105.0, 10.0)."""

    def _make(
        plot_id: str,
        x: float = 0,
        y: float = 0,
        *,
        variety: str = JASMINE,
        planting: date = date(2024, 1, 10),
        area: float = 2.0,
        farmer_id: str | None = None,
        boundary: bool = True,
        coordinates: bool = True,
        half: float = 0.00004,
        **overrides,
    ) -> PlotRecord:
        lon, lat = grid_point(x, y)
        fields = dict(
            plot_id=plot_id,
            farmer_id=farmer_id or f"farmer-{plot_id}",
            cluster_id=CLUSTER_ID,
            area=area,
            variety_id=variety,
            planting_date=planting,
            selection_confirmed=True,
            boundary=square_wkt(lon, lat, half) if boundary else None,
            latitude=lat if coordinates else None,
            longitude=lon if coordinates else None,
        )
        fields.update(overrides)
        return PlotRecord(**fields)

    return _make


# ── Database seeding ─────────────────────────────────────────────

class Seeder:
    """Adds reference data once, then plots and supervisors on demand."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def reference_data(self) -> None:
        self.db.add_all([
            Cluster(id=CLUSTER_ID, cluster_name="Tan Hiep", province="Kien Giang"),
            Season(id=SEASON_ID, season_name="Winter-Spring", start_month=11, end_month=3),
            RiceVariety(id=JASMINE, variety_name="Jasmine", base_growth_duration_days=100),
            RiceVariety(id=ST25, variety_name="ST25", base_growth_duration_days=105),
        ])
        await self.db.flush()

    async def plot(
        self,
        plot_id: str,
        x: float = 0,
        y: float = 0,
        *,
        variety: str | None = JASMINE,
        planting: date | None = date(2024, 1, 10),
        area: float = 2.0,
        confirmed: bool = True,
        farmer_id: str | None = None,
    ) -> Plot:
        farmer_id = farmer_id or f"farmer-{plot_id}"
        if await self.db.get(Farmer, farmer_id) is None:
            self.db.add(Farmer(
                id=farmer_id, cluster_id=CLUSTER_ID, full_name=f"Farmer {plot_id}",
                phone="0900000000",
            ))
        lon, lat = grid_point(x, y)
        plot = Plot(
            id=plot_id, farmer_id=farmer_id, boundary=square_wkt(lon, lat),
            latitude=lat, longitude=lon, area=area, soil_type="alluvial",
        )
        self.db.add(plot)
        if variety is not None:
            self.db.add(PlotCultivation(
                plot_id=plot_id, season_id=SEASON_ID, year=YEAR,
                rice_variety_id=variety, planting_date=planting, is_confirmed=confirmed,
            ))
        await self.db.flush()
        return plot

    async def supervisor(
        self,
        supervisor_id: str,
        max_farmer_capacity: int = 10,
        current_farmer_count: int = 0,
        **fields,
    ) -> Supervisor:
        supervisor = Supervisor(
            id=supervisor_id, cluster_id=CLUSTER_ID, full_name=f"Supervisor {supervisor_id}",
            max_farmer_capacity=max_farmer_capacity,
            current_farmer_count=current_farmer_count,
            **fields,
        )
        self.db.add(supervisor)
        await self.db.flush()
        return supervisor


@pytest_asyncio.fixture
async def seeder(db_session: AsyncSession) -> Seeder:
    seeder = Seeder(db_session)
    await seeder.reference_data()
    return seeder


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API endpoint tests")
