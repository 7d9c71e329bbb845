"""Stage 1: decide which plots take part in group formation.

Excluded plots are simply absent from the output (they are not reported as
ungrouped):
  - farmer inactive
  - plot status is not active
  - no confirmed variety + planting date for the season
  - already grouped for this season
  - belongs to another cluster

A boundary that is missing or fails to parse keeps the plot eligible with
`geometry_missing` set.
"""

import logging
from typing import Iterable

from shapely.geometry import Point

from app.models.farmer import PlotStatus
from app.services.grouping.geometry import DEFAULT_POLYGON_OPS, GeometryError, PolygonOps
from app.services.grouping.types import EligiblePlot, PlotRecord

logger = logging.getLogger(__name__)


def _is_candidate(record: PlotRecord, cluster_id: str) -> bool:
    if record.cluster_id != cluster_id:
        return False
    if not record.farmer_active:
        return False
    if record.status != PlotStatus.ACTIVE.value:
        return False
    if not record.selection_confirmed:
        return False
    if record.variety_id is None or record.planting_date is None:
        return False
    return not record.already_grouped


def filter_eligible_plots(
    records: Iterable[PlotRecord],
    cluster_id: str,
    polygon_ops: PolygonOps = DEFAULT_POLYGON_OPS,
) -> list[EligiblePlot]:
    """Return eligible plots ordered by plot id."""
    eligible: list[EligiblePlot] = []
    seen: set[str] = set()

    for record in sorted(records, key=lambda r: r.plot_id):
        if record.plot_id in seen or not _is_candidate(record, cluster_id):
            continue
        seen.add(record.plot_id)

        boundary = None
        if record.boundary:
            try:
                boundary = polygon_ops.parse(record.boundary)
            except GeometryError as exc:
                logger.warning(
                    "Plot %s boundary unusable, treating as missing geometry: %s",
                    record.plot_id, exc,
                )

        if boundary is not None:
            centroid = polygon_ops.centroid(boundary)
        elif record.latitude is not None and record.longitude is not None:
            centroid = Point(record.longitude, record.latitude)
        else:
            centroid = None

        eligible.append(EligiblePlot(
            record=record,
            variety_id=record.variety_id,
            planting_date=record.planting_date,
            boundary=boundary,
            centroid=centroid,
            geometry_missing=boundary is None,
        ))

    return eligible
