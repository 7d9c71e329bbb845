"""Supervisor assignment and group geometry aggregation tests."""

from datetime import date

import pytest

from app.services.grouping.aggregation import aggregate_boundary, build_groups
from app.services.grouping.eligibility import filter_eligible_plots
from app.services.grouping.supervisors import assign_supervisors, count_available
from app.services.grouping.types import SubCluster, SupervisorRecord
from conftest import CLUSTER_ID, JASMINE


def formed(*plot_groups):
    """FormedGroups numbered 1..n, one per list of PlotRecords."""
    subs = [
        SubCluster(
            raw_index=i,
            variety_id=JASMINE,
            plots=filter_eligible_plots(records, CLUSTER_ID),
            order_key=(i,),
        )
        for i, records in enumerate(plot_groups)
    ]
    return build_groups(subs)


@pytest.mark.unit
class TestAssignSupervisors:
    """Best-fit assignment, largest group first."""

    def test_best_fit_picks_tightest_supervisor(self, make_record):
        """The largest group goes to the smallest supervisor that can still take it."""
        big, small = formed(
            [make_record(f"a{i}", i, area=2.5) for i in range(4)],
            [make_record(f"b{i}", i, 20, area=1.0) for i in range(3)],
        )
        supervisors = [
            SupervisorRecord("sup-large", max_farmer_capacity=10),
            SupervisorRecord("sup-small", max_farmer_capacity=5),
        ]

        warnings = assign_supervisors([big, small], supervisors)

        assert warnings == []
        assert big.supervisor_id == "sup-small"
        assert small.supervisor_id == "sup-large"

    def test_supervisors_at_capacity(self, make_record):
        """Scenario D: nobody has room, so the group is left unassigned with a warning."""
        (group,) = formed([make_record(f"a{i}", i) for i in range(3)])
        supervisors = [SupervisorRecord("sup-full", max_farmer_capacity=5, current_farmer_count=5)]

        warnings = assign_supervisors([group], supervisors)

        assert group.supervisor_id is None
        assert len(warnings) == 1
        assert warnings[0].group_number == 1
        assert warnings[0].message.startswith("Group 1: insufficient supervisors")

    def test_area_cap_respected(self, make_record):
        """A supervisor whose remaining area is too small is skipped."""
        (group,) = formed([make_record(f"a{i}", i, area=5.0) for i in range(2)])
        supervisors = [
            SupervisorRecord("sup-capped", max_farmer_capacity=10, max_area_capacity=8.0),
            SupervisorRecord("sup-open", max_farmer_capacity=20),
        ]

        assign_supervisors([group], supervisors)

        assert group.supervisor_id == "sup-open"

    def test_capacity_consumed_across_groups(self, make_record):
        """A supervisor filled by one group cannot take the next."""
        first, second = formed(
            [make_record(f"a{i}", i, area=3.0) for i in range(3)],
            [make_record(f"b{i}", i, 20, area=1.0) for i in range(3)],
        )
        supervisors = [SupervisorRecord("sup-only", max_farmer_capacity=4)]

        warnings = assign_supervisors([first, second], supervisors)

        assert first.supervisor_id == "sup-only"
        assert second.supervisor_id is None
        assert [w.group_number for w in warnings] == [2]

    def test_shared_farmer_counted_once(self, make_record):
        """Capacity is measured in farmers, not plots."""
        (group,) = formed([make_record(f"a{i}", i, farmer_id="farmer-1") for i in range(3)])
        supervisors = [SupervisorRecord("sup-one", max_farmer_capacity=1)]

        assign_supervisors([group], supervisors)

        assert group.farmer_count == 1
        assert group.supervisor_id == "sup-one"

    def test_count_available(self):
        """Only supervisors with spare capacity count as available."""
        supervisors = [
            SupervisorRecord("a", max_farmer_capacity=5, current_farmer_count=5),
            SupervisorRecord("b", max_farmer_capacity=5, current_farmer_count=1),
            SupervisorRecord("c", max_farmer_capacity=5, max_area_capacity=10.0,
                             current_total_area=10.0),
        ]
        assert count_available(supervisors) == 1


@pytest.mark.unit
class TestGeometryAggregation:
    """Group numbering, planting window and boundary."""

    def test_build_groups_window_and_area(self, make_record):
        """Window spans member dates; median is the upper median; area is summed."""
        (group,) = formed([
            make_record("a", 0, planting=date(2024, 1, 9), area=1.11111),
            make_record("b", 1, planting=date(2024, 1, 12), area=1.11111),
            make_record("c", 2, planting=date(2024, 1, 10), area=1.11111),
            make_record("d", 3, planting=date(2024, 1, 11), area=1.11111),
        ])

        assert group.number == 1
        assert group.planting_window_start == date(2024, 1, 9)
        assert group.planting_window_end == date(2024, 1, 12)
        assert group.median_planting_date == date(2024, 1, 11)
        assert group.total_area == pytest.approx(4.4444)

    def test_disjoint_boundaries_use_convex_hull(self, make_record):
        """Non-touching plots are reported as the hull of their union."""
        (group,) = formed([make_record(f"p{i}", i) for i in range(3)])

        aggregate_boundary(group)

        assert group.boundary.geom_type == "Polygon"
        for plot in group.plots:
            assert group.boundary.covers(plot.boundary)
        assert group.centroid.x == pytest.approx(105.0001)

    def test_overlapping_boundaries_union(self, make_record):
        """Overlapping plots merge into one polygon without double counting."""
        (group,) = formed([make_record(f"p{i}", i, half=0.00006) for i in range(2)])

        aggregate_boundary(group)

        assert group.boundary.geom_type == "Polygon"
        assert group.boundary.area < sum(p.boundary.area for p in group.plots)
        assert group.total_area == pytest.approx(4.0)

    def test_no_boundaries(self, make_record):
        """Without member geometry there is no boundary and no centroid."""
        (group,) = formed([make_record(f"p{i}", i, boundary=False) for i in range(3)])

        aggregate_boundary(group)

        assert group.boundary is None
        assert group.centroid is None
