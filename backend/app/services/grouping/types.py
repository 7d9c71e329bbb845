"""In-memory records passed between pipeline stages.

Loaders turn ORM rows into these flat records before the engine runs;
no stage sees a session or a tracked entity.
"""

import enum
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Protocol

from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry

from app.middleware.exceptions import OperationCancelledError
from app.services.grouping.geometry import mean_point


class UngroupReason(str, enum.Enum):
    NO_GEOMETRY = "NoGeometry"
    VARIETY_INCOMPATIBLE = "VarietyIncompatible"
    DATE_MISMATCH = "DateMismatch"
    TOO_FAR_FROM_ANY_GROUP = "TooFarFromAnyGroup"
    CAPACITY_EXHAUSTED = "CapacityExhausted"


BELOW_MINIMUM = "Below minimum threshold"
ABOVE_MAXIMUM = "Above maximum threshold"
FORCED_MERGE_OVER_MAXIMUM = "Forced merge exceeds maximum threshold"


class CancellationToken(Protocol):
    """Anything with `is_set()`; asyncio.Event and threading.Event both fit."""

    def is_set(self) -> bool: ...


def check_cancelled(cancel: CancellationToken | None, stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError(stage)


def upper_median(dates: list[date]) -> date:
    """Median for an even count picks the later of the two middle dates."""
    ordered = sorted(dates)
    return ordered[len(ordered) // 2]


# ── Input records ───────────────────────────────────────────

@dataclass(frozen=True)
class PlotRecord:
    """One plot with its season selection, as produced by the plot loader."""
    plot_id: str
    farmer_id: str
    cluster_id: str
    area: float
    status: str = "active"
    farmer_active: bool = True
    variety_id: str | None = None
    planting_date: date | None = None
    selection_confirmed: bool = False
    already_grouped: bool = False
    boundary: str | None = None  # WKT or GeoJSON
    latitude: float | None = None
    longitude: float | None = None
    farmer_name: str | None = None
    farmer_phone: str | None = None
    soil_type: str | None = None


@dataclass(frozen=True)
class SupervisorRecord:
    supervisor_id: str
    max_farmer_capacity: int
    current_farmer_count: int = 0
    max_area_capacity: float | None = None
    current_total_area: float = 0.0
    full_name: str | None = None


# ── Stage records ───────────────────────────────────────────

@dataclass(frozen=True)
class EligiblePlot:
    record: PlotRecord
    variety_id: str
    planting_date: date
    boundary: BaseGeometry | None
    centroid: Point | None
    geometry_missing: bool

    @property
    def plot_id(self) -> str:
        return self.record.plot_id

    @property
    def farmer_id(self) -> str:
        return self.record.farmer_id

    @property
    def area(self) -> float:
        return self.record.area


@dataclass(eq=False)
class RawCluster:
    index: int
    plots: list[EligiblePlot]
    spatial: bool = True  # False for geometry-missing singletons


@dataclass(eq=False)
class SubCluster:
    """A variety-homogeneous working set moving through stages 3-5."""
    raw_index: int
    variety_id: str
    plots: list[EligiblePlot]
    order_key: tuple
    spatial: bool = True
    is_exception: bool = False
    exception_reason: str | None = None

    @property
    def plot_count(self) -> int:
        return len(self.plots)

    @property
    def total_area(self) -> float:
        return sum(p.area for p in self.plots)

    @property
    def median_date(self) -> date:
        return upper_median([p.planting_date for p in self.plots])

    @property
    def centroid(self) -> Point | None:
        return mean_point([p.centroid for p in self.plots if p.centroid is not None])

    @property
    def plot_ids(self) -> list[str]:
        return sorted(p.plot_id for p in self.plots)

    def window(self, tolerance_days: int) -> tuple[date, date]:
        median = self.median_date
        delta = timedelta(days=tolerance_days)
        return median - delta, median + delta


@dataclass(eq=False)
class FormedGroup:
    number: int
    variety_id: str
    plots: list[EligiblePlot]
    median_planting_date: date
    planting_window_start: date
    planting_window_end: date
    total_area: float
    is_exception: bool = False
    exception_reason: str | None = None
    boundary: BaseGeometry | None = None
    centroid: Point | None = None
    supervisor_id: str | None = None

    @property
    def plot_ids(self) -> list[str]:
        return [p.plot_id for p in self.plots]

    @property
    def farmer_count(self) -> int:
        return len({p.farmer_id for p in self.plots})

    @property
    def member_centroids(self) -> list[Point]:
        return [p.centroid for p in self.plots if p.centroid is not None]


@dataclass(frozen=True)
class NearbyCandidate:
    group_number: int | None
    variety_id: str
    distance: float | None
    planting_date_diff_days: int
    is_compatible: bool
    incompatibility_reason: str | None
    is_formed: bool
    plot_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class RecommendedAction:
    action: str
    description: str
    group_number: int | None = None


@dataclass
class UngroupedPlot:
    plot: EligiblePlot
    reason: UngroupReason
    reason_detail: str
    distance_to_nearest_group: float | None = None
    nearest_group_number: int | None = None
    nearby: list[NearbyCandidate] = field(default_factory=list)
    actions: list[RecommendedAction] = field(default_factory=list)


@dataclass(frozen=True)
class CapacityWarning:
    message: str
    group_number: int | None = None
    code: str = "INSUFFICIENT_SUPERVISORS"


@dataclass
class PipelineResult:
    eligible: list[EligiblePlot]
    groups: list[FormedGroup]
    ungrouped: list[UngroupedPlot]
    capacity_warnings: list[CapacityWarning] = field(default_factory=list)
    supervisors_available: int = 0

    @property
    def grouped_plot_ids(self) -> list[str]:
        return [pid for g in self.groups for pid in g.plot_ids]

    @property
    def estimated_total_area(self) -> float:
        return sum(g.total_area for g in self.groups)

    def ungrouped_by_reason(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for u in self.ungrouped:
            counts[u.reason.value] = counts.get(u.reason.value, 0) + 1
        return counts


def median_gap_days(a: date, b: date) -> int:
    return abs((a - b).days)
