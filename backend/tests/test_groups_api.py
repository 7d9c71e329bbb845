"""Group formation endpoint tests."""

from datetime import date, datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from jose import jwt

from app.config import settings
from conftest import CLUSTER_ID, SEASON_ID, YEAR

QUERY = {"cluster_id": CLUSTER_ID, "season_id": SEASON_ID, "year": YEAR}


def role_headers(role: str) -> dict:
    """Bearer header for a token that carries a role but no permission list."""
    token = jwt.encode(
        {
            "sub": f"user-{role}",
            "role": role,
            "type": "access",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        },
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return {"Authorization": f"Bearer {token}"}


async def seed_group(seeder) -> None:
    for i in range(4):
        await seeder.plot(f"p{i}", i, planting=date(2024, 1, 10))
    await seeder.supervisor("sup-1")


@pytest.mark.api
@pytest.mark.asyncio
class TestGroupsAuth:
    """Every grouping endpoint needs a token with the right permission."""

    async def test_preview_requires_token(self, client: AsyncClient, seeder):
        resp = await client.get("/api/groups/preview", params=QUERY)
        assert resp.status_code == 401

    async def test_preview_rejects_garbage_token(self, client: AsyncClient, seeder):
        resp = await client.get(
            "/api/groups/preview", params=QUERY,
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert resp.status_code == 401

    async def test_missing_permission(self, client: AsyncClient, seeder, read_only_headers):
        """A token without group.read gets 403."""
        resp = await client.get("/api/groups/preview", params=QUERY, headers=read_only_headers)
        assert resp.status_code == 403
        assert "group.read" in resp.json()["error"]["message"]

    async def test_role_defaults_without_permission_claim(self, client: AsyncClient, seeder):
        """A cluster manager token with no permission list can preview and form."""
        await seed_group(seeder)
        headers = role_headers("cluster_manager")

        preview = await client.get("/api/groups/preview", params=QUERY, headers=headers)
        form = await client.post("/api/groups/form", headers=headers, json=QUERY)

        assert preview.status_code == 200
        assert form.status_code == 201

    async def test_supervisor_role_cannot_form(self, client: AsyncClient, seeder):
        """Supervisors read groups by default but cannot commit them."""
        headers = role_headers("supervisor")

        preview = await client.get("/api/groups/preview", params=QUERY, headers=headers)
        form = await client.post("/api/groups/form", headers=headers, json=QUERY)

        assert preview.status_code == 200
        assert form.status_code == 403


@pytest.mark.api
@pytest.mark.asyncio
class TestPreviewEndpoint:

    async def test_preview(self, client: AsyncClient, seeder, auth_headers):
        """Preview returns the candidate group without writing it."""
        await seed_group(seeder)

        resp = await client.get("/api/groups/preview", params=QUERY, headers=auth_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["summary"]["groups_to_be_formed"] == 1
        assert data["preview_groups"][0]["plot_ids"] == ["p0", "p1", "p2", "p3"]
        assert data["parameters"]["proximity_threshold"] == 100.0

    async def test_query_parameters_override_defaults(
        self, client: AsyncClient, seeder, auth_headers
    ):
        """A min plot count above the group size leaves the plots in an exception group."""
        await seed_group(seeder)

        resp = await client.get(
            "/api/groups/preview",
            params={**QUERY, "min_plots_per_group": 5},
            headers=auth_headers,
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["parameters"]["min_plots_per_group"] == 5
        assert data["preview_groups"][0]["is_exception"] is True

    async def test_inverted_bounds_rejected(self, client: AsyncClient, seeder, auth_headers):
        """min_group_area above max_group_area is a validation error."""
        resp = await client.get(
            "/api/groups/preview",
            params={**QUERY, "min_group_area": 60, "max_group_area": 50},
            headers=auth_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_unknown_cluster(self, client: AsyncClient, seeder, auth_headers):
        resp = await client.get(
            "/api/groups/preview",
            params={**QUERY, "cluster_id": "nowhere"},
            headers=auth_headers,
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    async def test_ungrouped(self, client: AsyncClient, seeder, auth_headers):
        await seed_group(seeder)
        await seeder.plot("far", 0, 90)

        resp = await client.get(
            "/api/groups/ungrouped",
            params={**QUERY, "undersized_policy": "reject"},
            headers=auth_headers,
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["total_ungrouped_plots"] == 1
        assert data["statistics"]["by_reason"] == {"TooFarFromAnyGroup": 1}


@pytest.mark.api
@pytest.mark.asyncio
class TestFormEndpoint:

    async def test_form(self, client: AsyncClient, seeder, auth_headers):
        """POST /form commits the previewed group."""
        await seed_group(seeder)

        resp = await client.post("/api/groups/form", headers=auth_headers, json={
            **QUERY,
            "parameters": {"planting_date_tolerance": 3},
        })

        assert resp.status_code == 201
        data = resp.json()
        assert data["groups_created"] == 1
        assert data["groups"][0]["supervisor_id"] == "sup-1"
        assert data["groups"][0]["status"] == "draft"

    async def test_form_requires_write(self, client: AsyncClient, seeder, read_only_headers):
        resp = await client.post("/api/groups/form", headers=read_only_headers, json=QUERY)
        assert resp.status_code == 403

    async def test_form_invalid_year(self, client: AsyncClient, seeder, auth_headers):
        resp = await client.post(
            "/api/groups/form", headers=auth_headers, json={**QUERY, "year": 1990}
        )
        assert resp.status_code == 422

    async def test_create_manual_conflict(self, client: AsyncClient, seeder, auth_headers):
        """Grouping the same plot twice in a season returns 409 with the plot ids."""
        await seeder.plot("p0")
        body = {**QUERY, "rice_variety_id": "v-jasmine", "plot_ids": ["p0"]}

        first = await client.post("/api/groups/create-manual", headers=auth_headers, json=body)
        second = await client.post("/api/groups/create-manual", headers=auth_headers, json=body)

        assert first.status_code == 201
        assert second.status_code == 409
        error = second.json()["error"]
        assert error["code"] == "CONCURRENCY_CONFLICT"
        assert error["details"] == {"plot_ids": ["p0"]}


@pytest.mark.api
@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
