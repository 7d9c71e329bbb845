"""Compose the grouping stages into one pure, deterministic run.

No I/O happens here: callers load plot and supervisor records first and
persist (or just render) the result afterwards. Identical inputs always
produce identical groups and ungrouped lists.
"""

import logging
from typing import Iterable

from app.schemas.grouping import GroupingParameters
from app.services.grouping.aggregation import aggregate_geometry, build_groups
from app.services.grouping.clustering import cluster_by_proximity
from app.services.grouping.eligibility import filter_eligible_plots
from app.services.grouping.explainer import explain_ungrouped
from app.services.grouping.geometry import DEFAULT_POLYGON_OPS, PolygonOps
from app.services.grouping.partition import partition_by_variety, reconcile_planting_windows
from app.services.grouping.sizing import resolve_group_sizes
from app.services.grouping.supervisors import assign_supervisors, count_available
from app.services.grouping.types import (
    CancellationToken,
    PipelineResult,
    PlotRecord,
    SupervisorRecord,
    check_cancelled,
)

logger = logging.getLogger(__name__)


def run_pipeline(
    cluster_id: str,
    plots: Iterable[PlotRecord],
    supervisors: list[SupervisorRecord],
    params: GroupingParameters,
    *,
    assign: bool = True,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
    cancel: CancellationToken | None = None,
) -> PipelineResult:
    check_cancelled(cancel, "eligibility")
    eligible = filter_eligible_plots(plots, cluster_id, polygon_ops)

    check_cancelled(cancel, "proximity_clustering")
    raw_clusters = cluster_by_proximity(eligible, params.proximity_threshold)

    check_cancelled(cancel, "variety_partition")
    by_variety = partition_by_variety(raw_clusters)

    check_cancelled(cancel, "planting_window")
    date_clusters, ejected = reconcile_planting_windows(
        by_variety, params.planting_date_tolerance
    )

    check_cancelled(cancel, "area_constraints")
    sized = resolve_group_sizes(date_clusters, params)
    groups = build_groups(sized.groups)

    check_cancelled(cancel, "supervisor_assignment")
    warnings = assign_supervisors(groups, supervisors) if assign else []

    check_cancelled(cancel, "geometry_aggregation")
    aggregate_geometry(groups, polygon_ops)

    check_cancelled(cancel, "ungrouped_explanation")
    ungrouped = explain_ungrouped(
        eligible, groups, sized.rejected, raw_clusters, ejected, params
    )

    logger.debug(
        "Cluster %s: %d eligible, %d raw clusters, %d groups, %d ungrouped",
        cluster_id, len(eligible), len(raw_clusters), len(groups), len(ungrouped),
    )
    return PipelineResult(
        eligible=eligible,
        groups=groups,
        ungrouped=ungrouped,
        capacity_warnings=warnings,
        supervisors_available=count_available(supervisors),
    )
