"""Group formation engine: pure stages plus the pipeline that runs them."""

from app.services.grouping.geometry import (  # noqa: F401
    GeometryError,
    PolygonOps,
    ShapelyPolygonOps,
)
from app.services.grouping.pipeline import run_pipeline  # noqa: F401
from app.services.grouping.types import (  # noqa: F401
    CapacityWarning,
    PipelineResult,
    PlotRecord,
    SupervisorRecord,
    UngroupReason,
)
