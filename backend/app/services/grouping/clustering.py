"""Stage 2: proximity clustering.

Plots with geometry become nodes of an undirected graph; an edge joins two
plots whose centroids are within `proximity_threshold` metres (haversine).
Candidate pairs come from an STRtree query on a degree envelope, then the
exact distance decides. Connected components are the raw clusters.

Geometry-missing plots never join a spatial cluster; each becomes its own
singleton raw cluster.
"""

import networkx as nx
from shapely import box
from shapely.strtree import STRtree

from app.services.grouping.geometry import degree_envelope, haversine_m
from app.services.grouping.types import EligiblePlot, RawCluster


def build_adjacency_graph(plots: list[EligiblePlot], threshold_m: float) -> nx.Graph:
    """Nodes are plot ids; edge weight is centroid distance in metres."""
    spatial = sorted(
        (p for p in plots if not p.geometry_missing and p.centroid is not None),
        key=lambda p: p.plot_id,
    )
    graph = nx.Graph()
    graph.add_nodes_from(p.plot_id for p in spatial)
    if len(spatial) < 2:
        return graph

    tree = STRtree([p.centroid for p in spatial])
    for i, plot in enumerate(spatial):
        envelope = box(*degree_envelope(plot.centroid, threshold_m))
        for j in sorted(int(k) for k in tree.query(envelope)):
            if j <= i:
                continue
            other = spatial[j]
            distance = haversine_m(plot.centroid, other.centroid)
            if distance <= threshold_m:
                graph.add_edge(plot.plot_id, other.plot_id, weight=distance)
    return graph


def cluster_by_proximity(plots: list[EligiblePlot], threshold_m: float) -> list[RawCluster]:
    """Return raw clusters ordered by their smallest plot id.

    Output is independent of input order: members are sorted by plot id and
    clusters by their first member.
    """
    by_id = {p.plot_id: p for p in plots}
    graph = build_adjacency_graph(plots, threshold_m)

    components: list[tuple[list[str], bool]] = [
        (sorted(component), True) for component in nx.connected_components(graph)
    ]
    for plot in plots:
        if plot.plot_id not in graph:
            components.append(([plot.plot_id], False))

    components.sort(key=lambda c: c[0][0])
    return [
        RawCluster(index=i, plots=[by_id[pid] for pid in members], spatial=spatial)
        for i, (members, spatial) in enumerate(components)
    ]
