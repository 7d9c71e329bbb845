"""Plot eligibility and boundary parsing tests."""

import json
from dataclasses import replace

import pytest
from shapely.geometry import Point

from app.services.grouping.eligibility import filter_eligible_plots
from app.services.grouping.geometry import (
    GeometryError,
    ShapelyPolygonOps,
    degree_envelope,
    haversine_m,
)
from conftest import CLUSTER_ID


@pytest.mark.unit
class TestPolygonOps:
    """Shapely-backed polygon operations."""

    def test_parse_wkt_polygon(self):
        """WKT polygons parse as-is."""
        geom = ShapelyPolygonOps().parse("POLYGON((0 0, 1 0, 1 1, 0 1, 0 0))")
        assert geom.geom_type == "Polygon"
        assert geom.area == pytest.approx(1.0)

    def test_parse_geojson_polygon(self):
        """GeoJSON text is accepted as well as WKT."""
        text = json.dumps({
            "type": "Polygon",
            "coordinates": [[[0, 0], [2, 0], [2, 2], [0, 2], [0, 0]]],
        })
        geom = ShapelyPolygonOps().parse(text)
        assert geom.area == pytest.approx(4.0)

    def test_parse_repairs_self_intersection(self):
        """A bow-tie ring is repaired into a valid areal geometry."""
        geom = ShapelyPolygonOps().parse("POLYGON((0 0, 2 2, 2 0, 0 2, 0 0))")
        assert geom.is_valid
        assert geom.area > 0

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "POINT(1 1)",
        "LINESTRING(0 0, 1 1)",
        "POLYGON((0 0, 1 0",
        '{"type": "Polygon"}',
    ])
    def test_parse_rejects_unusable_boundaries(self, text):
        """Empty, non-areal and malformed input raises GeometryError."""
        with pytest.raises(GeometryError):
            ShapelyPolygonOps().parse(text)

    def test_haversine_one_degree_of_latitude(self):
        """One degree of latitude is about 111.2 km."""
        assert haversine_m(Point(105, 10), Point(105, 11)) == pytest.approx(111_195, abs=5)

    def test_degree_envelope_contains_radius(self):
        """The envelope reaches at least `meters` away in every direction."""
        center = Point(105.0, 10.0)
        minx, miny, maxx, maxy = degree_envelope(center, 100.0)
        assert haversine_m(center, Point(maxx, center.y)) >= 100.0
        assert haversine_m(center, Point(center.x, maxy)) >= 100.0
        assert haversine_m(center, Point(minx, center.y)) >= 100.0


@pytest.mark.unit
class TestFilterEligiblePlots:
    """Stage 1: which plots enter the pipeline."""

    def test_confirmed_active_plot_is_eligible(self, make_record):
        """A plot with a confirmed selection and a boundary passes through."""
        eligible = filter_eligible_plots([make_record("p1")], CLUSTER_ID)

        assert [p.plot_id for p in eligible] == ["p1"]
        assert eligible[0].geometry_missing is False
        assert eligible[0].centroid.x == pytest.approx(105.0)
        assert eligible[0].centroid.y == pytest.approx(10.0)

    @pytest.mark.parametrize("overrides", [
        {"farmer_active": False},
        {"status": "inactive"},
        {"status": "pending_polygon"},
        {"selection_confirmed": False},
        {"variety_id": None},
        {"planting_date": None},
        {"already_grouped": True},
        {"cluster_id": "cluster-other"},
    ])
    def test_excluded_plots_are_dropped(self, make_record, overrides):
        """Excluded plots are absent from the output, not reported."""
        records = [make_record("p1"), make_record("p2", 1, **overrides)]

        eligible = filter_eligible_plots(records, CLUSTER_ID)

        assert [p.plot_id for p in eligible] == ["p1"]

    def test_output_sorted_and_deduplicated(self, make_record):
        """Output is ordered by plot id and each plot appears once."""
        records = [make_record("p3"), make_record("p1"), make_record("p2"), make_record("p1")]

        eligible = filter_eligible_plots(records, CLUSTER_ID)

        assert [p.plot_id for p in eligible] == ["p1", "p2", "p3"]

    def test_unparseable_boundary_marks_geometry_missing(self, make_record):
        """A broken boundary keeps the plot eligible and falls back to its coordinates."""
        record = replace(make_record("p1", 2, 0), boundary="POLYGON((1 2")

        eligible = filter_eligible_plots([record], CLUSTER_ID)

        assert len(eligible) == 1
        assert eligible[0].geometry_missing is True
        assert eligible[0].boundary is None
        assert eligible[0].centroid.x == pytest.approx(105.0002)

    def test_no_boundary_and_no_coordinates(self, make_record):
        """Without any location the plot has neither boundary nor centroid."""
        record = make_record("p1", boundary=False, coordinates=False)

        eligible = filter_eligible_plots([record], CLUSTER_ID)

        assert eligible[0].geometry_missing is True
        assert eligible[0].centroid is None
