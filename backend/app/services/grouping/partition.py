"""Stages 3 and 4: variety partitioning and planting-window reconciliation."""

import logging
from collections import defaultdict

from app.services.grouping.types import (
    RawCluster,
    SubCluster,
    median_gap_days,
    upper_median,
)

logger = logging.getLogger(__name__)


# ── Stage 3: variety partition ──────────────────────────────

def partition_by_variety(raw_clusters: list[RawCluster]) -> list[SubCluster]:
    """Split each raw cluster into variety-homogeneous sub-clusters.

    Sub-clusters are ranked across the whole run: larger first, then the
    smaller variety id, then the smaller first plot id. The rank is the root
    of `order_key` and drives group numbering.
    """
    parts: list[tuple[RawCluster, str, list]] = []
    for raw in raw_clusters:
        by_variety: dict[str, list] = defaultdict(list)
        for plot in raw.plots:
            by_variety[plot.variety_id].append(plot)
        for variety_id, plots in by_variety.items():
            parts.append((raw, variety_id, sorted(plots, key=lambda p: p.plot_id)))

    parts.sort(key=lambda part: (-len(part[2]), part[1], part[2][0].plot_id))
    return [
        SubCluster(
            raw_index=raw.index,
            variety_id=variety_id,
            plots=plots,
            order_key=(rank,),
            spatial=raw.spatial,
        )
        for rank, (raw, variety_id, plots) in enumerate(parts)
    ]


# ── Stage 4: planting window ────────────────────────────────

def _split_by_window(sub: SubCluster, tolerance_days: int) -> tuple[list[SubCluster], set[str]]:
    pending = sorted(sub.plots, key=lambda p: (p.planting_date, p.plot_id))
    date_clusters: list[SubCluster] = []
    ejected: set[str] = set()

    while pending:
        median = upper_median([p.planting_date for p in pending])
        inside = [p for p in pending if median_gap_days(p.planting_date, median) <= tolerance_days]
        outside = [p for p in pending if median_gap_days(p.planting_date, median) > tolerance_days]

        # The median of `inside` is recomputed once by SubCluster.median_date
        date_clusters.append(SubCluster(
            raw_index=sub.raw_index,
            variety_id=sub.variety_id,
            plots=sorted(inside, key=lambda p: p.plot_id),
            order_key=sub.order_key + (len(date_clusters),),
            spatial=sub.spatial,
        ))

        leftover = []
        for plot in outside:
            ejected.add(plot.plot_id)
            fits = [
                (median_gap_days(plot.planting_date, dc.median_date), i)
                for i, dc in enumerate(date_clusters)
                if median_gap_days(plot.planting_date, dc.median_date) <= tolerance_days
            ]
            if fits:
                _, target = min(fits)
                ejected.discard(plot.plot_id)
                date_clusters[target].plots.append(plot)
                date_clusters[target].plots.sort(key=lambda p: p.plot_id)
            else:
                leftover.append(plot)
        pending = leftover

    return date_clusters, ejected


def reconcile_planting_windows(
    subclusters: list[SubCluster],
    tolerance_days: int,
) -> tuple[list[SubCluster], set[str]]:
    """Split each variety sub-cluster into planting-date clusters.

    Plots outside [median - tolerance, median + tolerance] are ejected, retried
    against the date clusters already formed from the same sub-cluster, and
    otherwise seed the next date cluster. Returns the date clusters and the
    ids of the plots whose last retry failed, i.e. those left in a date
    cluster made only of outliers.
    """
    reconciled: list[SubCluster] = []
    ejected: set[str] = set()
    for sub in subclusters:
        clusters, sub_ejected = _split_by_window(sub, tolerance_days)
        if len(clusters) > 1:
            logger.debug(
                "Variety %s in raw cluster %d split into %d planting windows",
                sub.variety_id, sub.raw_index, len(clusters),
            )
        reconciled.extend(clusters)
        ejected |= sub_ejected
    return reconciled, ejected
