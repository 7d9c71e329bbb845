"""Polygon operations used by the grouping engine.

The engine talks to geometry only through the `PolygonOps` protocol so the
pure stages can be exercised with any implementation. `ShapelyPolygonOps`
is the production one.

Coordinates are EPSG:4326 with x = longitude, y = latitude. Distances are
great-circle metres (haversine); plot areas always come from the plot
record, never from polygon area.
"""

import json
import math
from typing import Protocol, Sequence

from shapely import wkt
from shapely.errors import ShapelyError
from shapely.geometry import MultiPolygon, Point, Polygon, mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

EARTH_RADIUS_M = 6_371_000.0
# Slightly under the true length so envelopes never clip a neighbour
METERS_PER_DEGREE_LAT = 111_000.0


class GeometryError(ValueError):
    """A plot boundary could not be parsed into a usable polygon."""


class PolygonOps(Protocol):
    def parse(self, text: str) -> BaseGeometry: ...

    def union(self, geometries: Sequence[BaseGeometry]) -> BaseGeometry: ...

    def convex_hull(self, geometry: BaseGeometry) -> BaseGeometry: ...

    def centroid(self, geometry: BaseGeometry) -> Point: ...

    def to_geojson(self, geometry: BaseGeometry) -> str: ...

    def to_wkt(self, geometry: BaseGeometry) -> str: ...


class ShapelyPolygonOps:
    """`PolygonOps` backed by shapely."""

    def parse(self, text: str) -> BaseGeometry:
        """Parse WKT or GeoJSON text into a Polygon / MultiPolygon.

        Raises GeometryError for empty, non-areal or unreadable input.
        Self-intersecting rings are repaired with a zero-width buffer.
        """
        if text is None or not text.strip():
            raise GeometryError("Boundary is empty")
        raw = text.strip()
        try:
            if raw.startswith("{"):
                geom = shape(json.loads(raw))
            else:
                geom = wkt.loads(raw)
        except (ShapelyError, ValueError, TypeError, KeyError, AttributeError) as exc:
            raise GeometryError(f"Unreadable boundary: {exc}") from exc

        if geom.is_empty or not isinstance(geom, (Polygon, MultiPolygon)):
            raise GeometryError(f"Boundary is not a polygon: {geom.geom_type}")
        if not geom.is_valid:
            geom = geom.buffer(0)
            if geom.is_empty:
                raise GeometryError("Boundary collapses to nothing when repaired")
        return geom

    def union(self, geometries: Sequence[BaseGeometry]) -> BaseGeometry:
        return unary_union(list(geometries))

    def convex_hull(self, geometry: BaseGeometry) -> BaseGeometry:
        return geometry.convex_hull

    def centroid(self, geometry: BaseGeometry) -> Point:
        return geometry.centroid

    def to_geojson(self, geometry: BaseGeometry) -> str:
        return json.dumps(mapping(geometry))

    def to_wkt(self, geometry: BaseGeometry) -> str:
        return geometry.wkt


DEFAULT_POLYGON_OPS = ShapelyPolygonOps()


# ── Distances ───────────────────────────────────────────────

def haversine_m(a: Point, b: Point) -> float:
    """Great-circle distance in metres between two lon/lat points."""
    lat1, lat2 = math.radians(a.y), math.radians(b.y)
    dlat = lat2 - lat1
    dlon = math.radians(b.x - a.x)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def distance_or_inf(a: Point | None, b: Point | None) -> float:
    if a is None or b is None:
        return math.inf
    return haversine_m(a, b)


def degree_envelope(point: Point, meters: float) -> tuple[float, float, float, float]:
    """Lon/lat bounding box that contains every point within `meters`."""
    dlat = meters / METERS_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(point.y)), 1e-6)
    dlon = meters / (METERS_PER_DEGREE_LAT * cos_lat)
    return (point.x - dlon, point.y - dlat, point.x + dlon, point.y + dlat)


def mean_point(points: Sequence[Point]) -> Point | None:
    """Arithmetic mean of points; adequate at village scale."""
    if not points:
        return None
    return Point(
        sum(p.x for p in points) / len(points),
        sum(p.y for p in points) / len(points),
    )
