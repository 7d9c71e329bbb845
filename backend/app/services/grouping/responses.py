"""Pure mapping from pipeline results to response schemas."""

from dataclasses import dataclass, field

from app.schemas.grouping import (
    CoordinateOut,
    GroupingParameters,
    NearbyGroupOut,
    PlotInGroupOut,
    PreviewGroupOut,
    PreviewGroupsResponse,
    PreviewSummary,
    RecommendedActionOut,
    UngroupedPlotDetailOut,
    UngroupedPlotOut,
    UngroupedPlotsResponse,
    UngroupedStatistics,
)
from app.services.grouping.geometry import DEFAULT_POLYGON_OPS, PolygonOps
from app.services.grouping.types import (
    EligiblePlot,
    FormedGroup,
    NearbyCandidate,
    PipelineResult,
    UngroupedPlot,
)
from app.utils.numbering import format_group_name


@dataclass
class Names:
    """Display names resolved from reference data for one run."""
    cluster_name: str | None = None
    season_name: str | None = None
    variety: dict[str, str] = field(default_factory=dict)
    supervisor: dict[str, str] = field(default_factory=dict)
    sequence_offset: int = 0  # groups already committed for the season

    def variety_name(self, variety_id: str) -> str:
        return self.variety.get(variety_id, variety_id)

    def group_name(self, group: FormedGroup, year: int) -> str:
        return format_group_name(
            self.cluster_name,
            self.season_name,
            year,
            self.variety_name(group.variety_id),
            self.sequence_offset + group.number,
        )


def _geojson(plot: EligiblePlot, polygon_ops: PolygonOps) -> str | None:
    return polygon_ops.to_geojson(plot.boundary) if plot.boundary is not None else None


def nearby_out(candidate: NearbyCandidate, names: Names) -> NearbyGroupOut:
    return NearbyGroupOut(
        group_number=candidate.group_number,
        rice_variety_id=candidate.variety_id,
        rice_variety_name=names.variety_name(candidate.variety_id),
        distance=candidate.distance,
        planting_date_diff_days=candidate.planting_date_diff_days,
        is_compatible=candidate.is_compatible,
        incompatibility_reason=candidate.incompatibility_reason,
        is_formed=candidate.is_formed,
        plot_ids=list(candidate.plot_ids),
    )


def preview_group_out(
    group: FormedGroup,
    year: int,
    names: Names,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
) -> PreviewGroupOut:
    return PreviewGroupOut(
        group_number=group.number,
        group_name=names.group_name(group, year),
        rice_variety_id=group.variety_id,
        rice_variety_name=names.variety_name(group.variety_id),
        supervisor_id=group.supervisor_id,
        supervisor_name=names.supervisor.get(group.supervisor_id) if group.supervisor_id else None,
        planting_window_start=group.planting_window_start,
        planting_window_end=group.planting_window_end,
        median_planting_date=group.median_planting_date,
        plot_count=len(group.plots),
        farmer_count=group.farmer_count,
        total_area=group.total_area,
        centroid_lat=group.centroid.y if group.centroid is not None else None,
        centroid_lng=group.centroid.x if group.centroid is not None else None,
        group_boundary_geojson=(
            polygon_ops.to_geojson(group.boundary) if group.boundary is not None else None
        ),
        is_exception=group.is_exception,
        exception_reason=group.exception_reason,
        plot_ids=group.plot_ids,
        plots=[
            PlotInGroupOut(
                plot_id=p.plot_id,
                farmer_id=p.farmer_id,
                farmer_name=p.record.farmer_name,
                farmer_phone=p.record.farmer_phone,
                area=p.area,
                planting_date=p.planting_date,
                boundary_geojson=_geojson(p, polygon_ops),
                soil_type=p.record.soil_type,
            )
            for p in group.plots
        ],
    )


def ungrouped_out(
    item: UngroupedPlot,
    names: Names,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
) -> UngroupedPlotOut:
    plot = item.plot
    return UngroupedPlotOut(
        plot_id=plot.plot_id,
        farmer_id=plot.farmer_id,
        farmer_name=plot.record.farmer_name,
        farmer_phone=plot.record.farmer_phone,
        rice_variety_id=plot.variety_id,
        rice_variety_name=names.variety_name(plot.variety_id),
        planting_date=plot.planting_date,
        area=plot.area,
        boundary_geojson=_geojson(plot, polygon_ops),
        ungroup_reason=item.reason.value,
        reason_description=item.reason_detail,
        distance_to_nearest_group=item.distance_to_nearest_group,
        nearest_group_number=item.nearest_group_number,
        suggestions=[a.description for a in item.actions],
        nearby_groups=[nearby_out(c, names) for c in item.nearby],
    )


def ungrouped_detail_out(
    item: UngroupedPlot,
    names: Names,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
) -> UngroupedPlotDetailOut:
    plot = item.plot
    return UngroupedPlotDetailOut(
        plot_id=plot.plot_id,
        farmer_id=plot.farmer_id,
        farmer_name=plot.record.farmer_name,
        farmer_phone=plot.record.farmer_phone,
        rice_variety_id=plot.variety_id,
        rice_variety_name=names.variety_name(plot.variety_id),
        planting_date=plot.planting_date,
        area=plot.area,
        soil_type=plot.record.soil_type,
        coordinate=(
            CoordinateOut(latitude=plot.centroid.y, longitude=plot.centroid.x)
            if plot.centroid is not None else None
        ),
        boundary_wkt=polygon_ops.to_wkt(plot.boundary) if plot.boundary is not None else None,
        ungroup_reason=item.reason.value,
        reason_details=item.reason_detail,
        nearest_groups=[nearby_out(c, names) for c in item.nearby],
        recommended_actions=[
            RecommendedActionOut(
                action=a.action, group_number=a.group_number, description=a.description
            )
            for a in item.actions
        ],
    )


# ── Warnings ────────────────────────────────────────────────

def collect_warnings(result: PipelineResult) -> list[str]:
    warnings = []
    for group in result.groups:
        if group.is_exception:
            warnings.append(
                f"Group {group.number} flagged for manual review: {group.exception_reason}"
            )
    warnings.extend(w.message for w in result.capacity_warnings)
    if result.ungrouped:
        warnings.append(
            f"{len(result.ungrouped)} plots could not be grouped automatically "
            f"and require manual assignment"
        )
    return warnings


# ── Whole responses ─────────────────────────────────────────

def preview_response(
    cluster_id: str,
    season_id: str,
    year: int,
    params: GroupingParameters,
    result: PipelineResult,
    names: Names,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
    message: str | None = None,
) -> PreviewGroupsResponse:
    return PreviewGroupsResponse(
        cluster_id=cluster_id,
        season_id=season_id,
        year=year,
        parameters=params,
        summary=PreviewSummary(
            total_eligible_plots=len(result.eligible),
            plots_grouped=len(result.grouped_plot_ids),
            ungrouped_plots=len(result.ungrouped),
            groups_to_be_formed=len(result.groups),
            exception_groups=sum(1 for g in result.groups if g.is_exception),
            estimated_total_area=round(result.estimated_total_area, 4),
            supervisors_needed=len(result.groups),
            supervisors_available=result.supervisors_available,
        ),
        preview_groups=[preview_group_out(g, year, names, polygon_ops) for g in result.groups],
        ungrouped_plots=[ungrouped_out(u, names, polygon_ops) for u in result.ungrouped],
        warnings=collect_warnings(result),
        message=message,
    )


def ungrouped_response(
    cluster_id: str,
    season_id: str,
    year: int,
    result: PipelineResult,
    names: Names,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
) -> UngroupedPlotsResponse:
    by_variety: dict[str, int] = {}
    for item in result.ungrouped:
        name = names.variety_name(item.plot.variety_id)
        by_variety[name] = by_variety.get(name, 0) + 1

    return UngroupedPlotsResponse(
        cluster_id=cluster_id,
        season_id=season_id,
        year=year,
        total_ungrouped_plots=len(result.ungrouped),
        total_area=round(sum(u.plot.area for u in result.ungrouped), 4),
        ungrouped_plots=[ungrouped_detail_out(u, names, polygon_ops) for u in result.ungrouped],
        statistics=UngroupedStatistics(
            by_reason=result.ungrouped_by_reason(),
            by_variety=by_variety,
        ),
    )
