"""Group formation router.

Endpoints:
    GET  /preview          Run the pipeline read-only for a cluster/season/year
    POST /form             Re-run and commit the groups (all or nothing)
    GET  /ungrouped        Ungrouped plots with reasons, nearest groups, actions
    POST /create-manual    Create one draft group from an explicit plot list

Preview and ungrouped require group.read; form and create-manual require
group.write.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import CurrentUser, require_permission
from app.database import get_db
from app.schemas.grouping import (
    CreatedGroupOut,
    CreateGroupManuallyRequest,
    FormGroupsRequest,
    FormGroupsResponse,
    GroupingParameters,
    PreviewGroupsResponse,
    UndersizedPolicy,
    UngroupedPlotsResponse,
)
from app.services.group_formation import (
    create_group_manually,
    form_groups,
    list_ungrouped_plots,
    preview_groups,
)

router = APIRouter()


def grouping_parameters(
    proximity_threshold: float | None = Query(None, description="Metres"),
    planting_date_tolerance: int | None = Query(None, description="Days"),
    min_group_area: float | None = Query(None, description="Hectares"),
    max_group_area: float | None = Query(None, description="Hectares"),
    min_plots_per_group: int | None = Query(None),
    max_plots_per_group: int | None = Query(None),
    undersized_policy: UndersizedPolicy | None = Query(None),
    include_empty_seasons: bool = Query(False),
) -> GroupingParameters:
    """Build parameters from query values; omitted ones take the configured defaults."""
    supplied = {
        "proximity_threshold": proximity_threshold,
        "planting_date_tolerance": planting_date_tolerance,
        "min_group_area": min_group_area,
        "max_group_area": max_group_area,
        "min_plots_per_group": min_plots_per_group,
        "max_plots_per_group": max_plots_per_group,
        "undersized_policy": undersized_policy,
    }
    return GroupingParameters(
        include_empty_seasons=include_empty_seasons,
        **{k: v for k, v in supplied.items() if v is not None},
    )


# ── Preview ──────────────────────────────────────────────────

@router.get("/preview", response_model=PreviewGroupsResponse)
async def preview(
    cluster_id: str = Query(...),
    season_id: str = Query(...),
    year: int = Query(..., ge=2000, le=2100),
    params: GroupingParameters = Depends(grouping_parameters),
    db: AsyncSession = Depends(get_db),
    _user: CurrentUser = Depends(require_permission("group.read")),
):
    """Candidate groups and ungrouped plots; nothing is written."""
    return await preview_groups(db, cluster_id, season_id, year, params)


# ── Commit ───────────────────────────────────────────────────

@router.post("/form", response_model=FormGroupsResponse, status_code=status.HTTP_201_CREATED)
async def form(
    body: FormGroupsRequest,
    db: AsyncSession = Depends(get_db),
    _user: CurrentUser = Depends(require_permission("group.write")),
):
    return await form_groups(db, body)


# ── Ungrouped plots ──────────────────────────────────────────

@router.get("/ungrouped", response_model=UngroupedPlotsResponse)
async def ungrouped(
    cluster_id: str = Query(...),
    season_id: str = Query(...),
    year: int = Query(..., ge=2000, le=2100),
    params: GroupingParameters = Depends(grouping_parameters),
    db: AsyncSession = Depends(get_db),
    _user: CurrentUser = Depends(require_permission("group.read")),
):
    return await list_ungrouped_plots(db, cluster_id, season_id, year, params)


# ── Manual creation ──────────────────────────────────────────

@router.post(
    "/create-manual",
    response_model=CreatedGroupOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_manual(
    body: CreateGroupManuallyRequest,
    db: AsyncSession = Depends(get_db),
    _user: CurrentUser = Depends(require_permission("group.write")),
):
    return await create_group_manually(db, body)
