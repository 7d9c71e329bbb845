"""Stage 6: best-fit supervisor assignment.

Groups are served largest area first. Each takes the supervisor with the
smallest remaining capacity that still fits the group's farmers and area;
that supervisor's remaining capacity is then reduced. A group nobody can
take keeps `supervisor_id = None` and produces a CapacityWarning.
"""

import logging
from dataclasses import dataclass

from app.services.grouping.types import CapacityWarning, FormedGroup, SupervisorRecord

logger = logging.getLogger(__name__)


@dataclass
class _Capacity:
    supervisor_id: str
    farmer_slots: int
    area_left: float | None  # None = no area cap

    @property
    def remaining(self) -> float:
        if self.area_left is None:
            return self.farmer_slots
        return min(self.farmer_slots, self.area_left)

    def fits(self, group: FormedGroup) -> bool:
        if self.farmer_slots < group.farmer_count:
            return False
        return self.area_left is None or self.area_left >= group.total_area

    def take(self, group: FormedGroup) -> None:
        self.farmer_slots -= group.farmer_count
        if self.area_left is not None:
            self.area_left -= group.total_area


def _capacities(supervisors: list[SupervisorRecord]) -> list[_Capacity]:
    capacities = [
        _Capacity(
            supervisor_id=s.supervisor_id,
            farmer_slots=s.max_farmer_capacity - s.current_farmer_count,
            area_left=(
                None if s.max_area_capacity is None
                else s.max_area_capacity - s.current_total_area
            ),
        )
        for s in supervisors
    ]
    capacities.sort(key=lambda c: (-c.remaining, c.supervisor_id))
    return capacities


def count_available(supervisors: list[SupervisorRecord]) -> int:
    """Supervisors that could still take at least one more farmer."""
    return sum(1 for c in _capacities(supervisors) if c.remaining > 0)


def assign_supervisors(
    groups: list[FormedGroup],
    supervisors: list[SupervisorRecord],
) -> list[CapacityWarning]:
    """Set `supervisor_id` on each group in place; return capacity warnings."""
    capacities = _capacities(supervisors)
    warnings: list[CapacityWarning] = []

    for group in sorted(groups, key=lambda g: (-g.total_area, g.number)):
        fitting = [c for c in capacities if c.fits(group)]
        if not fitting:
            group.supervisor_id = None
            warnings.append(CapacityWarning(
                message=(
                    f"Group {group.number}: insufficient supervisors "
                    f"(needs {group.farmer_count} farmer slots, {group.total_area:.2f} ha)"
                ),
                group_number=group.number,
            ))
            continue
        chosen = min(fitting, key=lambda c: (c.remaining, c.supervisor_id))
        chosen.take(group)
        group.supervisor_id = chosen.supervisor_id

    if warnings:
        logger.warning("%d group(s) left without a supervisor", len(warnings))
    return sorted(warnings, key=lambda w: w.group_number)
