"""Aggregate model imports for Alembic auto-detection."""

# Reference data
from app.models.cluster import Cluster, RiceVariety, Season  # noqa: F401

# Farmers and plots
from app.models.farmer import Farmer, Plot, PlotCultivation, PlotStatus  # noqa: F401
from app.models.supervisor import Supervisor  # noqa: F401

# Group formation output
from app.models.group import Group, GroupPlot, GroupStatus  # noqa: F401
