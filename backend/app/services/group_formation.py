"""Group formation orchestrator.

Runs the grouping pipeline for one (cluster, season, year) and either:
  - previews the result without writing anything
  - commits it: re-runs the pipeline, re-checks that no candidate plot was
    grouped in the meantime, then writes Group + GroupPlot rows and
    supervisor running totals inside the caller's transaction
  - lists ungrouped plots with reasons and recommended actions
  - creates a single group by hand from a chosen plot list

Missing reference data aborts before the pipeline starts. A conflicting
concurrent commit rolls the whole session back and raises
ConcurrencyConflictError; the caller should preview again.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    ConcurrencyConflictError,
    GroupingValidationError,
    ResourceNotFoundError,
)
from app.models.cluster import Cluster, Season
from app.models.farmer import Farmer, Plot, PlotCultivation
from app.models.group import Group, GroupPlot, GroupStatus
from app.models.supervisor import Supervisor
from app.schemas.grouping import (
    CreatedGroupOut,
    CreateGroupManuallyRequest,
    FormGroupsRequest,
    FormGroupsResponse,
    GroupingParameters,
    PreviewGroupsResponse,
    PreviewSummary,
    UngroupedPlotsResponse,
)
from app.services.grouping import store
from app.services.grouping.geometry import DEFAULT_POLYGON_OPS, GeometryError, PolygonOps
from app.services.grouping.pipeline import run_pipeline
from app.services.grouping.responses import (
    Names,
    collect_warnings,
    preview_response,
    ungrouped_response,
)
from app.services.grouping.types import (
    CancellationToken,
    FormedGroup,
    PipelineResult,
    PlotRecord,
    check_cancelled,
    upper_median,
)
from app.utils.numbering import count_existing_groups, format_group_name

logger = logging.getLogger(__name__)

NO_ELIGIBLE_PLOTS = "No eligible plots found for this cluster, season and year"
NO_GROUPS_FORMED = "No groups could be formed from the eligible plots"


@dataclass
class _Run:
    cluster: Cluster
    season: Season
    result: PipelineResult
    names: Names


async def _run(
    db: AsyncSession,
    cluster_id: str,
    season_id: str,
    year: int,
    params: GroupingParameters,
    *,
    assign: bool = True,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
    cancel: CancellationToken | None = None,
    records: list[PlotRecord] | None = None,
) -> _Run:
    cluster = await store.get_cluster(db, cluster_id)
    season = await store.get_season(db, season_id)

    if records is None:
        records = await store.list_plot_records(db, cluster_id, season_id, year)
    variety_names = await store.load_variety_names(
        db, {r.variety_id for r in records if r.selection_confirmed and r.variety_id}
    )
    supervisors = await store.list_supervisor_records(db, cluster_id)

    result = run_pipeline(
        cluster_id, records, supervisors, params,
        assign=assign, polygon_ops=polygon_ops, cancel=cancel,
    )
    names = Names(
        cluster_name=cluster.cluster_name,
        season_name=season.season_name,
        variety=variety_names,
        supervisor={s.supervisor_id: s.full_name for s in supervisors if s.full_name},
        sequence_offset=await count_existing_groups(db, cluster_id, season_id, year),
    )
    return _Run(cluster=cluster, season=season, result=result, names=names)


# ── Preview ─────────────────────────────────────────────────

async def preview_groups(
    db: AsyncSession,
    cluster_id: str,
    season_id: str,
    year: int,
    params: GroupingParameters,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
    cancel: CancellationToken | None = None,
) -> PreviewGroupsResponse:
    """Read-only run of the full pipeline. Never writes."""
    await store.get_cluster(db, cluster_id)
    await store.get_season(db, season_id)

    records: list[PlotRecord] | None = None
    if not params.include_empty_seasons:
        records = await store.list_plot_records(db, cluster_id, season_id, year)
        if not any(r.selection_confirmed for r in records):
            logger.info(
                "Preview cluster=%s season=%s year=%s: no cultivation selections",
                cluster_id, season_id, year,
            )
            return PreviewGroupsResponse(
                cluster_id=cluster_id,
                season_id=season_id,
                year=year,
                parameters=params,
                summary=PreviewSummary(),
                message=NO_ELIGIBLE_PLOTS,
            )

    run = await _run(
        db, cluster_id, season_id, year, params,
        polygon_ops=polygon_ops, cancel=cancel, records=records,
    )
    result = run.result
    logger.info(
        "Preview cluster=%s season=%s year=%s: %d groups, %d grouped, %d ungrouped",
        cluster_id, season_id, year,
        len(result.groups), len(result.grouped_plot_ids), len(result.ungrouped),
    )
    return preview_response(
        cluster_id, season_id, year, params, result, run.names, polygon_ops,
        message=None if result.eligible else NO_ELIGIBLE_PLOTS,
    )


async def list_ungrouped_plots(
    db: AsyncSession,
    cluster_id: str,
    season_id: str,
    year: int,
    params: GroupingParameters,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
    cancel: CancellationToken | None = None,
) -> UngroupedPlotsResponse:
    run = await _run(
        db, cluster_id, season_id, year, params,
        polygon_ops=polygon_ops, cancel=cancel,
    )
    return ungrouped_response(cluster_id, season_id, year, run.result, run.names, polygon_ops)


# ── Commit ──────────────────────────────────────────────────

def _group_row(
    group: FormedGroup,
    body: FormGroupsRequest,
    names: Names,
    polygon_ops: PolygonOps,
) -> Group:
    status = GroupStatus.ACTIVE if body.create_groups_immediately else GroupStatus.DRAFT
    row = Group(
        id=str(uuid.uuid4()),
        group_name=names.group_name(group, body.year),
        cluster_id=body.cluster_id,
        season_id=body.season_id,
        year=body.year,
        rice_variety_id=group.variety_id,
        supervisor_id=group.supervisor_id,
        planting_date=group.median_planting_date,
        planting_window_start=group.planting_window_start,
        planting_window_end=group.planting_window_end,
        status=status.value,
        is_exception=group.is_exception,
        exception_reason=group.exception_reason,
        total_area=group.total_area,
        boundary=polygon_ops.to_wkt(group.boundary) if group.boundary is not None else None,
    )
    for plot_id in group.plot_ids:
        row.plots.append(GroupPlot(
            plot_id=plot_id, season_id=body.season_id, year=body.year,
        ))
    return row


def _created_out(row: Group, group: FormedGroup, names: Names) -> CreatedGroupOut:
    return CreatedGroupOut(
        group_id=row.id,
        group_name=row.group_name,
        rice_variety_id=row.rice_variety_id,
        rice_variety_name=names.variety_name(row.rice_variety_id),
        supervisor_id=row.supervisor_id,
        supervisor_name=names.supervisor.get(row.supervisor_id) if row.supervisor_id else None,
        planting_date=row.planting_date,
        planting_window_start=row.planting_window_start,
        planting_window_end=row.planting_window_end,
        status=row.status,
        is_exception=row.is_exception,
        exception_reason=row.exception_reason,
        plot_count=len(group.plot_ids),
        total_area=row.total_area,
        group_boundary_wkt=row.boundary,
        plot_ids=group.plot_ids,
    )


async def form_groups(
    db: AsyncSession,
    body: FormGroupsRequest,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
    cancel: CancellationToken | None = None,
) -> FormGroupsResponse:
    """Re-run the pipeline and persist every formed group, all or nothing.

    Flushes but does not commit: the request's session dependency commits.
    """
    run = await _run(
        db, body.cluster_id, body.season_id, body.year, body.parameters,
        assign=body.auto_assign_supervisors, polygon_ops=polygon_ops, cancel=cancel,
    )
    result = run.result
    response = FormGroupsResponse(
        cluster_id=body.cluster_id,
        season_id=body.season_id,
        year=body.year,
        ungrouped_plots=len(result.ungrouped),
        ungrouped_plot_ids=[u.plot.plot_id for u in result.ungrouped],
        warnings=collect_warnings(result),
    )
    if not result.eligible:
        response.message = NO_ELIGIBLE_PLOTS
        return response
    if not result.groups:
        response.message = NO_GROUPS_FORMED
        return response

    check_cancelled(cancel, "commit")

    candidate_ids = result.grouped_plot_ids
    conflicts = await store.grouped_plot_ids_for_season(
        db, body.season_id, body.year, candidate_ids
    )
    if conflicts:
        logger.warning(
            "Commit cluster=%s season=%s year=%s rejected: %d plots grouped concurrently",
            body.cluster_id, body.season_id, body.year, len(conflicts),
        )
        raise ConcurrencyConflictError(
            f"{len(conflicts)} plot(s) were grouped for this season after they were read; "
            f"run preview again",
            plot_ids=list(conflicts),
        )

    rows = []
    totals: dict[str, list] = defaultdict(lambda: [0, 0.0])
    for group in result.groups:
        row = _group_row(group, body, run.names, polygon_ops)
        db.add(row)
        rows.append((row, group))
        if group.supervisor_id:
            totals[group.supervisor_id][0] += group.farmer_count
            totals[group.supervisor_id][1] += group.total_area

    try:
        await store.update_supervisor_totals(
            db, {sid: (farmers, area) for sid, (farmers, area) in totals.items()}
        )
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning(
            "Commit cluster=%s season=%s year=%s hit a uniqueness conflict",
            body.cluster_id, body.season_id, body.year,
        )
        raise ConcurrencyConflictError(
            "Plots were grouped for this season by a concurrent commit; run preview again",
            plot_ids=candidate_ids,
        ) from exc

    response.groups = [_created_out(row, group, run.names) for row, group in rows]
    response.groups_created = len(rows)
    response.plots_grouped = len(candidate_ids)
    logger.info(
        "Committed %d groups (%d plots) for cluster=%s season=%s year=%s",
        response.groups_created, response.plots_grouped,
        body.cluster_id, body.season_id, body.year,
    )
    return response


# ── Manual creation ─────────────────────────────────────────

async def create_group_manually(
    db: AsyncSession,
    body: CreateGroupManuallyRequest,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
) -> CreatedGroupOut:
    """Create one draft group from an explicit plot list."""
    cluster = await store.get_cluster(db, body.cluster_id)
    season = await store.get_season(db, body.season_id)
    variety_names = await store.load_variety_names(db, {body.rice_variety_id})

    supervisor = None
    if body.supervisor_id:
        supervisor = (await db.execute(
            select(Supervisor).where(Supervisor.id == body.supervisor_id)
        )).scalar_one_or_none()
        if supervisor is None:
            raise ResourceNotFoundError("Supervisor", body.supervisor_id)
        if not supervisor.is_active or supervisor.cluster_id != body.cluster_id:
            raise GroupingValidationError(
                f"Supervisor {body.supervisor_id} is not active in this cluster"
            )

    plot_ids = sorted(set(body.plot_ids))
    rows = (await db.execute(
        select(Plot, Farmer)
        .join(Farmer, Plot.farmer_id == Farmer.id)
        .where(Plot.id.in_(plot_ids))
    )).all()
    found = {plot.id: (plot, farmer) for plot, farmer in rows}
    missing = [pid for pid in plot_ids if pid not in found]
    if missing:
        raise ResourceNotFoundError("Plot", ", ".join(missing))
    outside = [pid for pid, (_, farmer) in found.items() if farmer.cluster_id != body.cluster_id]
    if outside:
        raise GroupingValidationError(
            f"Plots do not belong to cluster {body.cluster_id}: {', '.join(sorted(outside))}"
        )

    conflicts = await store.grouped_plot_ids_for_season(db, body.season_id, body.year, plot_ids)
    if conflicts:
        raise ConcurrencyConflictError(
            "Some plots are already grouped for this season", plot_ids=list(conflicts)
        )

    cultivations = (await db.execute(
        select(PlotCultivation).where(
            PlotCultivation.plot_id.in_(plot_ids),
            PlotCultivation.season_id == body.season_id,
            PlotCultivation.year == body.year,
        )
    )).scalars().all()
    mismatched = sorted(
        c.plot_id for c in cultivations if c.rice_variety_id != body.rice_variety_id
    )
    if mismatched:
        raise GroupingValidationError(
            f"Plots are cultivating a different rice variety: {', '.join(mismatched)}"
        )
    dates = [c.planting_date for c in cultivations if c.planting_date is not None]

    boundaries = []
    for pid in plot_ids:
        plot = found[pid][0]
        if not plot.boundary:
            continue
        try:
            boundaries.append(polygon_ops.parse(plot.boundary))
        except GeometryError as exc:
            logger.warning("Plot %s boundary skipped in manual group: %s", pid, exc)
    boundary_wkt = None
    if boundaries:
        merged = polygon_ops.union(boundaries)
        if merged.geom_type != "Polygon":
            merged = polygon_ops.convex_hull(merged)
        boundary_wkt = polygon_ops.to_wkt(merged)

    total_area = round(sum(float(found[pid][0].area or 0.0) for pid in plot_ids), 4)
    farmer_count = len({found[pid][1].id for pid in plot_ids})
    sequence = await count_existing_groups(db, body.cluster_id, body.season_id, body.year) + 1

    row = Group(
        id=str(uuid.uuid4()),
        group_name=body.group_name or format_group_name(
            cluster.cluster_name, season.season_name, body.year,
            variety_names[body.rice_variety_id], sequence,
        ),
        cluster_id=body.cluster_id,
        season_id=body.season_id,
        year=body.year,
        rice_variety_id=body.rice_variety_id,
        supervisor_id=body.supervisor_id,
        planting_date=body.planting_date or (upper_median(dates) if dates else None),
        planting_window_start=min(dates) if dates else body.planting_date,
        planting_window_end=max(dates) if dates else body.planting_date,
        status=GroupStatus.DRAFT.value,
        is_exception=body.is_exception,
        exception_reason=body.exception_reason,
        total_area=total_area,
        boundary=boundary_wkt,
    )
    for pid in plot_ids:
        row.plots.append(GroupPlot(plot_id=pid, season_id=body.season_id, year=body.year))
    db.add(row)

    try:
        if supervisor is not None:
            await store.update_supervisor_totals(db, {supervisor.id: (farmer_count, total_area)})
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConcurrencyConflictError(
            "Some plots were grouped for this season by a concurrent request",
            plot_ids=plot_ids,
        ) from exc

    logger.info("Manually created group %s with %d plots", row.group_name, len(plot_ids))
    return CreatedGroupOut(
        group_id=row.id,
        group_name=row.group_name,
        rice_variety_id=row.rice_variety_id,
        rice_variety_name=variety_names[body.rice_variety_id],
        supervisor_id=row.supervisor_id,
        supervisor_name=supervisor.full_name if supervisor else None,
        planting_date=row.planting_date,
        planting_window_start=row.planting_window_start,
        planting_window_end=row.planting_window_end,
        status=row.status,
        is_exception=row.is_exception,
        exception_reason=row.exception_reason,
        plot_count=len(plot_ids),
        total_area=row.total_area,
        group_boundary_wkt=row.boundary,
        plot_ids=plot_ids,
    )
