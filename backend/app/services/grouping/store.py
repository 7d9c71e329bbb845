"""Database reads and writes around the grouping engine.

Reads return flat records (PlotRecord, SupervisorRecord); the engine never
sees ORM entities. Missing reference data raises ResourceNotFoundError.
"""

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import ResourceNotFoundError
from app.models.cluster import Cluster, RiceVariety, Season
from app.models.farmer import Farmer, Plot, PlotCultivation
from app.models.group import GroupPlot
from app.models.supervisor import Supervisor
from app.services.grouping.types import PlotRecord, SupervisorRecord


# ── Reference data ──────────────────────────────────────────

async def get_cluster(db: AsyncSession, cluster_id: str) -> Cluster:
    cluster = (await db.execute(
        select(Cluster).where(Cluster.id == cluster_id)
    )).scalar_one_or_none()
    if cluster is None:
        raise ResourceNotFoundError("Cluster", cluster_id)
    return cluster


async def get_season(db: AsyncSession, season_id: str) -> Season:
    season = (await db.execute(
        select(Season).where(Season.id == season_id)
    )).scalar_one_or_none()
    if season is None:
        raise ResourceNotFoundError("Season", season_id)
    return season


async def load_variety_names(db: AsyncSession, variety_ids: set[str]) -> dict[str, str]:
    """Map variety id → name; every requested id must exist."""
    if not variety_ids:
        return {}
    result = await db.execute(
        select(RiceVariety.id, RiceVariety.variety_name)
        .where(RiceVariety.id.in_(variety_ids))
    )
    names = {row.id: row.variety_name for row in result}
    missing = sorted(variety_ids - names.keys())
    if missing:
        raise ResourceNotFoundError("Rice variety", ", ".join(missing))
    return names


# ── Plot provider ───────────────────────────────────────────

async def grouped_plot_ids_for_season(
    db: AsyncSession,
    season_id: str,
    year: int,
    plot_ids: list[str] | None = None,
) -> set[str]:
    stmt = select(GroupPlot.plot_id).where(
        GroupPlot.season_id == season_id,
        GroupPlot.year == year,
    )
    if plot_ids is not None:
        if not plot_ids:
            return set()
        stmt = stmt.where(GroupPlot.plot_id.in_(plot_ids))
    return set((await db.execute(stmt)).scalars().all())


async def list_plot_records(
    db: AsyncSession, cluster_id: str, season_id: str, year: int
) -> list[PlotRecord]:
    """Every plot in the cluster with its selection for the season, if any.

    Eligibility is decided by the engine, not by this query.
    """
    stmt = (
        select(Plot, Farmer, PlotCultivation)
        .join(Farmer, Plot.farmer_id == Farmer.id)
        .outerjoin(
            PlotCultivation,
            and_(
                PlotCultivation.plot_id == Plot.id,
                PlotCultivation.season_id == season_id,
                PlotCultivation.year == year,
            ),
        )
        .where(Farmer.cluster_id == cluster_id)
        .order_by(Plot.id)
    )
    rows = (await db.execute(stmt)).all()
    grouped = await grouped_plot_ids_for_season(
        db, season_id, year, [plot.id for plot, _, _ in rows]
    )

    records = []
    for plot, farmer, cultivation in rows:
        records.append(PlotRecord(
            plot_id=plot.id,
            farmer_id=farmer.id,
            cluster_id=farmer.cluster_id,
            area=float(plot.area or 0.0),
            status=plot.status,
            farmer_active=bool(farmer.is_active),
            variety_id=cultivation.rice_variety_id if cultivation else None,
            planting_date=cultivation.planting_date if cultivation else None,
            selection_confirmed=bool(cultivation and cultivation.is_confirmed),
            already_grouped=plot.id in grouped,
            boundary=plot.boundary,
            latitude=plot.latitude,
            longitude=plot.longitude,
            farmer_name=farmer.full_name,
            farmer_phone=farmer.phone,
            soil_type=plot.soil_type,
        ))
    return records


# ── Supervisor provider ─────────────────────────────────────

async def list_supervisor_records(db: AsyncSession, cluster_id: str) -> list[SupervisorRecord]:
    result = await db.execute(
        select(Supervisor)
        .where(Supervisor.cluster_id == cluster_id, Supervisor.is_active.is_(True))
        .order_by(Supervisor.id)
    )
    return [
        SupervisorRecord(
            supervisor_id=s.id,
            max_farmer_capacity=s.max_farmer_capacity or 0,
            current_farmer_count=s.current_farmer_count or 0,
            max_area_capacity=s.max_area_capacity,
            current_total_area=s.current_total_area or 0.0,
            full_name=s.full_name,
        )
        for s in result.scalars().all()
    ]


async def update_supervisor_totals(
    db: AsyncSession, totals: dict[str, tuple[int, float]]
) -> None:
    """Add (farmers, hectares) to each supervisor's running totals."""
    if not totals:
        return
    result = await db.execute(
        select(Supervisor)
        .where(Supervisor.id.in_(list(totals)))
        .with_for_update()
    )
    for supervisor in result.scalars().all():
        farmers, area = totals[supervisor.id]
        supervisor.current_farmer_count = (supervisor.current_farmer_count or 0) + farmers
        supervisor.current_total_area = (supervisor.current_total_area or 0.0) + area
