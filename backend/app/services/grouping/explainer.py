"""Stage 8: explain every eligible plot that did not land in a group.

Exactly one reason per plot, first match wins:
  1. NoGeometry           no usable boundary and no fallback grouping
  2. VarietyIncompatible  its raw cluster has other plots, none of its variety
  3. DateMismatch         ejected by window reconciliation, never re-placed
  4. TooFarFromAnyGroup   further than the proximity threshold from every
                          formed group's plots
  5. CapacityExhausted    everything else: the size bounds could not hold it

Each ungrouped plot also carries its nearest candidates (formed groups and
unformed sub-clusters), the nearest formed group, and recommended actions.
"""

import math
from dataclasses import dataclass
from datetime import date

from shapely.geometry import Point

from app.schemas.grouping import GroupingParameters
from app.services.grouping.geometry import distance_or_inf, haversine_m, mean_point
from app.services.grouping.types import (
    EligiblePlot,
    FormedGroup,
    NearbyCandidate,
    RawCluster,
    RecommendedAction,
    SubCluster,
    UngroupedPlot,
    UngroupReason,
    median_gap_days,
)

MAX_NEARBY = 3


@dataclass
class _Candidate:
    group_number: int | None
    variety_id: str
    centroid: Point | None
    median_date: date
    plot_ids: tuple[str, ...]
    is_formed: bool


def _group_point(group: FormedGroup) -> Point | None:
    if group.centroid is not None:
        return group.centroid
    return mean_point(group.member_centroids)


def _candidates(groups: list[FormedGroup], rejected: list[SubCluster]) -> list[_Candidate]:
    out = [
        _Candidate(
            group_number=g.number,
            variety_id=g.variety_id,
            centroid=_group_point(g),
            median_date=g.median_planting_date,
            plot_ids=tuple(g.plot_ids),
            is_formed=True,
        )
        for g in groups
    ]
    out.extend(
        _Candidate(
            group_number=None,
            variety_id=s.variety_id,
            centroid=s.centroid,
            median_date=s.median_date,
            plot_ids=tuple(s.plot_ids),
            is_formed=False,
        )
        for s in rejected
    )
    return out


def _describe_candidate(
    plot: EligiblePlot,
    candidate: _Candidate,
    params: GroupingParameters,
) -> NearbyCandidate:
    distance = distance_or_inf(plot.centroid, candidate.centroid)
    gap = median_gap_days(plot.planting_date, candidate.median_date)
    if candidate.variety_id != plot.variety_id:
        reason = "Different rice variety"
    elif gap > params.planting_date_tolerance:
        reason = f"Planting date differs by {gap} days"
    else:
        reason = None
    return NearbyCandidate(
        group_number=candidate.group_number,
        variety_id=candidate.variety_id,
        distance=None if math.isinf(distance) else round(distance, 1),
        planting_date_diff_days=gap,
        is_compatible=reason is None,
        incompatibility_reason=reason,
        is_formed=candidate.is_formed,
        plot_ids=candidate.plot_ids,
    )


def _nearby_sort_key(c: NearbyCandidate):
    return (
        c.distance is None,
        c.distance if c.distance is not None else 0.0,
        not c.is_formed,
        c.group_number if c.group_number is not None else 0,
        c.plot_ids,
    )


def _min_distance_to_groups(plot: EligiblePlot, groups: list[FormedGroup]) -> float:
    if plot.centroid is None:
        return math.inf
    distances = [
        haversine_m(plot.centroid, other)
        for g in groups
        for other in g.member_centroids
    ]
    return min(distances, default=math.inf)


def _reason(
    plot: EligiblePlot,
    raw_members: list[EligiblePlot],
    ejected: set[str],
    groups: list[FormedGroup],
    params: GroupingParameters,
) -> tuple[UngroupReason, str]:
    if plot.geometry_missing:
        return (
            UngroupReason.NO_GEOMETRY,
            "Plot has no usable boundary polygon and no group of the same variety "
            "and planting window could absorb it",
        )

    others = [p for p in raw_members if p.plot_id != plot.plot_id]
    if others and not any(p.variety_id == plot.variety_id for p in others):
        return (
            UngroupReason.VARIETY_INCOMPATIBLE,
            f"None of the {len(others)} plot(s) within {params.proximity_threshold:g}m "
            f"grows the same rice variety",
        )

    if plot.plot_id in ejected:
        return (
            UngroupReason.DATE_MISMATCH,
            f"Planting date {plot.planting_date.isoformat()} is more than "
            f"{params.planting_date_tolerance} day(s) from the median of its neighbours",
        )

    if groups and _min_distance_to_groups(plot, groups) > params.proximity_threshold:
        return (
            UngroupReason.TOO_FAR_FROM_ANY_GROUP,
            f"Plot is more than {params.proximity_threshold:g}m from every formed group",
        )

    return (
        UngroupReason.CAPACITY_EXHAUSTED,
        f"Nearby compatible plots could not form a group within bounds "
        f"({params.min_plots_per_group}-{params.max_plots_per_group} plots, "
        f"{params.min_group_area:g}-{params.max_group_area:g} ha)",
    )


def _recommend(
    reason: UngroupReason,
    nearby: list[NearbyCandidate],
    params: GroupingParameters,
) -> list[RecommendedAction]:
    actions: list[RecommendedAction] = []

    for c in nearby:
        if (
            c.is_formed and c.is_compatible
            and c.distance is not None and c.distance <= params.suggestion_radius
        ):
            actions.append(RecommendedAction(
                action="assign_to_group",
                group_number=c.group_number,
                description=f"Assign to Group {c.group_number} manually ({c.distance:.0f}m away)",
            ))
            break

    unformed = [c for c in nearby if not c.is_formed and c.is_compatible]
    if unformed:
        count = len(unformed[0].plot_ids) + 1
        actions.append(RecommendedAction(
            action="create_exception_group",
            description=(
                f"Create exception group with {count} nearby compatible plot(s)"
            ),
        ))

    if reason == UngroupReason.NO_GEOMETRY:
        actions.append(RecommendedAction(
            action="assign_boundary",
            description="Draw or import the plot boundary polygon, then preview again",
        ))
    elif reason == UngroupReason.VARIETY_INCOMPATIBLE:
        actions.append(RecommendedAction(
            action="review_variety_selection",
            description="Confirm the rice variety with the farmer or group with a matching variety",
        ))
    elif reason == UngroupReason.DATE_MISMATCH:
        actions.append(RecommendedAction(
            action="adjust_planting_date_tolerance",
            description="Adjust the planting date or widen the planting date tolerance",
        ))
    elif reason == UngroupReason.TOO_FAR_FROM_ANY_GROUP:
        actions.append(RecommendedAction(
            action="increase_proximity_threshold",
            description="Consider adjusting proximity threshold parameter",
        ))
    else:
        actions.append(RecommendedAction(
            action="adjust_group_bounds",
            description="Consider adjusting minimum/maximum group size parameters",
        ))
    return actions


def explain_ungrouped(
    eligible: list[EligiblePlot],
    groups: list[FormedGroup],
    rejected: list[SubCluster],
    raw_clusters: list[RawCluster],
    ejected: set[str],
    params: GroupingParameters,
) -> list[UngroupedPlot]:
    """Return one UngroupedPlot per eligible plot missing from `groups`, by plot id."""
    grouped = {pid for g in groups for pid in g.plot_ids}
    raw_of = {p.plot_id: raw for raw in raw_clusters for p in raw.plots}
    candidates = _candidates(groups, rejected)

    explained: list[UngroupedPlot] = []
    for plot in sorted(eligible, key=lambda p: p.plot_id):
        if plot.plot_id in grouped:
            continue

        raw = raw_of.get(plot.plot_id)
        reason, detail = _reason(plot, raw.plots if raw else [plot], ejected, groups, params)

        nearby = sorted(
            (
                _describe_candidate(plot, c, params)
                for c in candidates
                if plot.plot_id not in c.plot_ids
            ),
            key=_nearby_sort_key,
        )[:MAX_NEARBY]

        nearest_formed = min(
            (
                (distance_or_inf(plot.centroid, _group_point(g)), g.number)
                for g in groups
            ),
            default=None,
        )
        if nearest_formed is not None and not math.isinf(nearest_formed[0]):
            distance, number = round(nearest_formed[0], 1), nearest_formed[1]
        else:
            distance, number = None, None

        explained.append(UngroupedPlot(
            plot=plot,
            reason=reason,
            reason_detail=detail,
            distance_to_nearest_group=distance,
            nearest_group_number=number,
            nearby=nearby,
            actions=_recommend(reason, nearby, params),
        ))
    return explained
