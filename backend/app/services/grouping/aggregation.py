"""Stage 7: turn sized sub-clusters into numbered groups with geometry.

The reportable boundary is the union of member boundaries; when the union
has disjoint parts its convex hull is used instead. The boundary is for
display only: total area is always the sum of plot areas.
"""

from app.services.grouping.geometry import DEFAULT_POLYGON_OPS, PolygonOps
from app.services.grouping.types import FormedGroup, SubCluster, upper_median


def aggregate_boundary(group: FormedGroup, polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS) -> None:
    boundaries = [p.boundary for p in group.plots if p.boundary is not None]
    if not boundaries:
        group.boundary = None
        group.centroid = None
        return

    merged = polygon_ops.union(boundaries)
    if merged.geom_type != "Polygon":
        merged = polygon_ops.convex_hull(merged)
    group.boundary = merged
    group.centroid = polygon_ops.centroid(merged)


def build_groups(subclusters: list[SubCluster]) -> list[FormedGroup]:
    """Number groups 1..n in sub-cluster order with their planting window."""
    groups: list[FormedGroup] = []
    for number, sub in enumerate(subclusters, start=1):
        plots = sorted(sub.plots, key=lambda p: p.plot_id)
        dates = [p.planting_date for p in plots]
        group = FormedGroup(
            number=number,
            variety_id=sub.variety_id,
            plots=plots,
            median_planting_date=upper_median(dates),
            planting_window_start=min(dates),
            planting_window_end=max(dates),
            total_area=round(sum(p.area for p in plots), 4),
            is_exception=sub.is_exception,
            exception_reason=sub.exception_reason,
        )
        groups.append(group)
    return groups


def aggregate_geometry(
    groups: list[FormedGroup],
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
) -> None:
    for group in groups:
        aggregate_boundary(group, polygon_ops)
