"""Stage 5: bring every date cluster inside the group-size bounds.

Oversized clusters are split by a greedy largest-first bin fill. Undersized
clusters are merged into the nearest compatible sibling; whatever is still
undersized is handled by the configured policy:

  flag    → exception group "Below minimum threshold"
  merge   → forced merge ignoring the max bounds, flag when no sibling exists
  reject  → plots stay ungrouped

A cluster built only from geometry-missing plots is never kept as an
exception group; if it cannot reach the bounds its plots are left ungrouped.
"""

import logging
from dataclasses import dataclass, field

from app.schemas.grouping import GroupingParameters, UndersizedPolicy
from app.services.grouping.geometry import distance_or_inf, mean_point
from app.services.grouping.types import (
    ABOVE_MAXIMUM,
    BELOW_MINIMUM,
    FORCED_MERGE_OVER_MAXIMUM,
    EligiblePlot,
    SubCluster,
    median_gap_days,
)

logger = logging.getLogger(__name__)


@dataclass
class SizingResult:
    groups: list[SubCluster] = field(default_factory=list)
    rejected: list[SubCluster] = field(default_factory=list)


def is_oversized(sub: SubCluster, params: GroupingParameters) -> bool:
    return (
        sub.plot_count > params.max_plots_per_group
        or sub.total_area > params.max_group_area
    )


def is_undersized(sub: SubCluster, params: GroupingParameters) -> bool:
    return (
        sub.plot_count < params.min_plots_per_group
        or sub.total_area < params.min_group_area
    )


# ── Splitting ───────────────────────────────────────────────

def split_oversized(sub: SubCluster, params: GroupingParameters) -> list[SubCluster]:
    """Greedy largest-first bin fill.

    Each bin is seeded with the largest remaining plot and grows by the plot
    nearest to the bin's running centroid until the next addition would break
    either max bound.
    """
    remaining: list[EligiblePlot] = sorted(sub.plots, key=lambda p: (-p.area, p.plot_id))
    bins: list[SubCluster] = []

    while remaining:
        members = [remaining.pop(0)]
        area = members[0].area
        while remaining:
            running = mean_point([p.centroid for p in members if p.centroid is not None])
            nearest = min(
                remaining,
                key=lambda p: (distance_or_inf(running, p.centroid), -p.area, p.plot_id),
            )
            if (
                len(members) + 1 > params.max_plots_per_group
                or area + nearest.area > params.max_group_area
            ):
                break
            members.append(nearest)
            remaining.remove(nearest)
            area += nearest.area

        bins.append(SubCluster(
            raw_index=sub.raw_index,
            variety_id=sub.variety_id,
            plots=sorted(members, key=lambda p: p.plot_id),
            order_key=sub.order_key + (len(bins),),
            spatial=sub.spatial,
        ))

    logger.debug(
        "Split %d plots (%.2f ha) of variety %s into %d bins",
        sub.plot_count, sub.total_area, sub.variety_id, len(bins),
    )
    return bins


# ── Merging ─────────────────────────────────────────────────

def _windows_overlap(a: SubCluster, b: SubCluster, tolerance_days: int) -> bool:
    return median_gap_days(a.median_date, b.median_date) <= 2 * tolerance_days


def _same_locality(source: SubCluster, target: SubCluster) -> bool:
    # A spatial cluster only merges inside its raw cluster; geometry-missing
    # plots may join any same-variety cluster in the cluster.
    if not source.spatial:
        return True
    return target.spatial and target.raw_index == source.raw_index


def find_merge_target(
    source: SubCluster,
    pool: list[SubCluster],
    params: GroupingParameters,
    respect_max: bool = True,
) -> SubCluster | None:
    """Nearest compatible sibling: same variety, overlapping window, and
    (unless forced) a combined size still within the max bounds.
    Ties break on median gap, then on cluster order.
    """
    best = None
    best_key = None
    for target in pool:
        if target is source or target.variety_id != source.variety_id:
            continue
        if not _same_locality(source, target):
            continue
        if not _windows_overlap(source, target, params.planting_date_tolerance):
            continue
        if respect_max and (
            source.plot_count + target.plot_count > params.max_plots_per_group
            or source.total_area + target.total_area > params.max_group_area
        ):
            continue
        key = (
            distance_or_inf(source.centroid, target.centroid),
            median_gap_days(source.median_date, target.median_date),
            target.order_key,
        )
        if best_key is None or key < best_key:
            best, best_key = target, key
    return best


def _merge(target: SubCluster, source: SubCluster) -> None:
    target.plots = sorted(target.plots + source.plots, key=lambda p: p.plot_id)
    target.order_key = min(target.order_key, source.order_key)
    target.spatial = target.spatial or source.spatial
    if not target.spatial:
        target.raw_index = min(target.raw_index, source.raw_index)


def _merge_undersized(working: list[SubCluster], params: GroupingParameters) -> None:
    """Merge undersized clusters into compatible siblings until none can move."""
    while True:
        candidates = sorted(
            (s for s in working if is_undersized(s, params) and not s.is_exception),
            key=lambda s: (s.total_area, s.plot_count, s.order_key),
        )
        for source in candidates:
            target = find_merge_target(source, working, params)
            if target is not None:
                _merge(target, source)
                working.remove(source)
                break
        else:
            return


# ── Entry point ─────────────────────────────────────────────

def resolve_group_sizes(
    subclusters: list[SubCluster],
    params: GroupingParameters,
) -> SizingResult:
    result = SizingResult()
    working: list[SubCluster] = []

    for sub in subclusters:
        if not is_oversized(sub, params):
            working.append(sub)
            continue
        for part in split_oversized(sub, params):
            if is_oversized(part, params):
                # A single plot larger than the area cap
                if params.undersized_policy == UndersizedPolicy.REJECT or not part.spatial:
                    result.rejected.append(part)
                else:
                    part.is_exception = True
                    part.exception_reason = ABOVE_MAXIMUM
                    working.append(part)
            else:
                working.append(part)

    _merge_undersized(working, params)

    for sub in sorted(working, key=lambda s: s.order_key):
        if sub not in working:
            continue  # absorbed by an earlier forced merge
        if sub.is_exception or not is_undersized(sub, params):
            continue
        if not sub.spatial or params.undersized_policy == UndersizedPolicy.REJECT:
            working.remove(sub)
            result.rejected.append(sub)
            continue
        if params.undersized_policy == UndersizedPolicy.MERGE:
            target = find_merge_target(sub, working, params, respect_max=False)
            if target is not None:
                _merge(target, sub)
                working.remove(sub)
                if is_oversized(target, params):
                    target.is_exception = True
                    target.exception_reason = FORCED_MERGE_OVER_MAXIMUM
                continue
        sub.is_exception = True
        sub.exception_reason = BELOW_MINIMUM

    # Numbering order: larger first, then variety id, then partition rank
    result.groups = sorted(
        working, key=lambda s: (-s.plot_count, s.variety_id, s.order_key)
    )
    result.rejected.sort(key=lambda s: s.order_key)
    if result.rejected:
        logger.debug(
            "%d sub-clusters (%d plots) could not satisfy group bounds",
            len(result.rejected), sum(s.plot_count for s in result.rejected),
        )
    return result
