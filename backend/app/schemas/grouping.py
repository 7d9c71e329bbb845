"""Pydantic schemas for group formation: parameters, requests, responses."""

import enum
from datetime import date

from pydantic import BaseModel, Field, model_validator

from app.config import settings


class UndersizedPolicy(str, enum.Enum):
    FLAG = "flag"      # keep as exception group for manual review
    MERGE = "merge"    # force into nearest same-variety sibling, ignoring max bounds
    REJECT = "reject"  # leave plots ungrouped


# ── Parameters ───────────────────────────────────────────────

class GroupingParameters(BaseModel):
    """Per-invocation tuning for the group formation pipeline.

    Defaults come from settings; callers always pass an explicit instance.
    """
    proximity_threshold: float = Field(
        default_factory=lambda: settings.grouping_proximity_threshold_m, gt=0
    )  # metres
    planting_date_tolerance: int = Field(
        default_factory=lambda: settings.grouping_planting_date_tolerance_days, ge=0
    )  # days
    min_group_area: float = Field(
        default_factory=lambda: settings.grouping_min_group_area_ha, ge=0
    )  # hectares
    max_group_area: float = Field(
        default_factory=lambda: settings.grouping_max_group_area_ha, gt=0
    )
    min_plots_per_group: int = Field(
        default_factory=lambda: settings.grouping_min_plots_per_group, ge=1
    )
    max_plots_per_group: int = Field(
        default_factory=lambda: settings.grouping_max_plots_per_group, ge=1
    )
    undersized_policy: UndersizedPolicy = Field(
        default_factory=lambda: UndersizedPolicy(settings.grouping_undersized_policy)
    )
    suggestion_radius: float = Field(
        default_factory=lambda: settings.grouping_suggestion_radius_m, gt=0
    )  # metres
    include_empty_seasons: bool = False  # preview only

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def bounds_ordered(self):
        if self.min_group_area > self.max_group_area:
            raise ValueError("min_group_area must not exceed max_group_area")
        if self.min_plots_per_group > self.max_plots_per_group:
            raise ValueError("min_plots_per_group must not exceed max_plots_per_group")
        return self


# ── Requests ─────────────────────────────────────────────────

class FormGroupsRequest(BaseModel):
    """Payload for POST /api/groups/form."""
    cluster_id: str
    season_id: str
    year: int = Field(..., ge=2000, le=2100)
    parameters: GroupingParameters = Field(default_factory=GroupingParameters)
    auto_assign_supervisors: bool = True
    create_groups_immediately: bool = False  # active instead of draft


class CreateGroupManuallyRequest(BaseModel):
    """Payload for POST /api/groups/create-manual."""
    cluster_id: str
    season_id: str
    year: int = Field(..., ge=2000, le=2100)
    rice_variety_id: str
    plot_ids: list[str] = Field(..., min_length=1)
    supervisor_id: str | None = None
    planting_date: date | None = None
    is_exception: bool = False
    exception_reason: str | None = Field(None, max_length=255)
    group_name: str | None = Field(None, max_length=100)


# ── Shared pieces ────────────────────────────────────────────

class NearbyGroupOut(BaseModel):
    """A formed group or an unformed candidate sub-cluster near an ungrouped plot."""
    group_number: int | None = None  # None for unformed candidates
    rice_variety_id: str
    rice_variety_name: str
    distance: float | None = None  # metres, None when either side lacks geometry
    planting_date_diff_days: int
    is_compatible: bool
    incompatibility_reason: str | None = None
    is_formed: bool
    plot_ids: list[str] = []


class RecommendedActionOut(BaseModel):
    action: str  # assign_to_group | create_exception_group | assign_boundary | ...
    group_number: int | None = None
    description: str


class CoordinateOut(BaseModel):
    latitude: float
    longitude: float


# ── Preview ──────────────────────────────────────────────────

class PlotInGroupOut(BaseModel):
    plot_id: str
    farmer_id: str
    farmer_name: str | None = None
    farmer_phone: str | None = None
    area: float
    planting_date: date
    boundary_geojson: str | None = None
    soil_type: str | None = None


class PreviewGroupOut(BaseModel):
    group_number: int
    group_name: str
    rice_variety_id: str
    rice_variety_name: str
    supervisor_id: str | None = None
    supervisor_name: str | None = None
    planting_window_start: date
    planting_window_end: date
    median_planting_date: date
    plot_count: int
    farmer_count: int
    total_area: float
    centroid_lat: float | None = None
    centroid_lng: float | None = None
    group_boundary_geojson: str | None = None
    is_exception: bool = False
    exception_reason: str | None = None
    plot_ids: list[str]
    plots: list[PlotInGroupOut]


class UngroupedPlotOut(BaseModel):
    plot_id: str
    farmer_id: str
    farmer_name: str | None = None
    farmer_phone: str | None = None
    rice_variety_id: str
    rice_variety_name: str
    planting_date: date
    area: float
    boundary_geojson: str | None = None
    ungroup_reason: str
    reason_description: str
    distance_to_nearest_group: float | None = None
    nearest_group_number: int | None = None
    suggestions: list[str] = []
    nearby_groups: list[NearbyGroupOut] = []


class PreviewSummary(BaseModel):
    total_eligible_plots: int = 0
    plots_grouped: int = 0
    ungrouped_plots: int = 0
    groups_to_be_formed: int = 0
    exception_groups: int = 0
    estimated_total_area: float = 0.0
    supervisors_needed: int = 0
    supervisors_available: int = 0


class PreviewGroupsResponse(BaseModel):
    cluster_id: str
    season_id: str
    year: int
    parameters: GroupingParameters
    summary: PreviewSummary
    preview_groups: list[PreviewGroupOut] = []
    ungrouped_plots: list[UngroupedPlotOut] = []
    warnings: list[str] = []
    message: str | None = None


# ── Commit ───────────────────────────────────────────────────

class CreatedGroupOut(BaseModel):
    group_id: str
    group_name: str
    rice_variety_id: str
    rice_variety_name: str
    supervisor_id: str | None = None
    supervisor_name: str | None = None
    planting_date: date | None = None
    planting_window_start: date | None = None
    planting_window_end: date | None = None
    status: str
    is_exception: bool = False
    exception_reason: str | None = None
    plot_count: int
    total_area: float
    group_boundary_wkt: str | None = None
    plot_ids: list[str]


class FormGroupsResponse(BaseModel):
    cluster_id: str
    season_id: str
    year: int
    groups_created: int = 0
    plots_grouped: int = 0
    ungrouped_plots: int = 0
    groups: list[CreatedGroupOut] = []
    ungrouped_plot_ids: list[str] = []
    warnings: list[str] = []
    message: str | None = None


# ── Ungrouped detail ─────────────────────────────────────────

class UngroupedPlotDetailOut(BaseModel):
    plot_id: str
    farmer_id: str
    farmer_name: str | None = None
    farmer_phone: str | None = None
    rice_variety_id: str
    rice_variety_name: str
    planting_date: date
    area: float
    soil_type: str | None = None
    coordinate: CoordinateOut | None = None
    boundary_wkt: str | None = None
    ungroup_reason: str
    reason_details: str
    nearest_groups: list[NearbyGroupOut] = []
    recommended_actions: list[RecommendedActionOut] = []


class UngroupedStatistics(BaseModel):
    by_reason: dict[str, int] = {}
    by_variety: dict[str, int] = {}


class UngroupedPlotsResponse(BaseModel):
    cluster_id: str
    season_id: str
    year: int
    total_ungrouped_plots: int = 0
    total_area: float = 0.0
    ungrouped_plots: list[UngroupedPlotDetailOut] = []
    statistics: UngroupedStatistics = Field(default_factory=UngroupedStatistics)
