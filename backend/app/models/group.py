"""Production groups and their plot membership.

A plot can belong to many groups over time but to at most one group per
season instance; `group_plots` carries season_id/year so the database
enforces that with a unique constraint.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class GroupStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    group_name: Mapped[str] = mapped_column(String(100), nullable=False)
    cluster_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clusters.id"), nullable=False, index=True
    )
    season_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("seasons.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    rice_variety_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rice_varieties.id"), nullable=False
    )
    supervisor_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("supervisors.id")
    )

    # ── Planting ─────────────────────────────────────────────
    planting_date: Mapped[date | None] = mapped_column(Date)  # median
    planting_window_start: Mapped[date | None] = mapped_column(Date)
    planting_window_end: Mapped[date | None] = mapped_column(Date)

    status: Mapped[str] = mapped_column(
        String(20), default=GroupStatus.DRAFT.value
    )  # draft | active | completed
    is_exception: Mapped[bool] = mapped_column(Boolean, default=False)
    exception_reason: Mapped[str | None] = mapped_column(String(255))

    total_area: Mapped[float] = mapped_column(Float, default=0.0)  # sum of plot areas
    boundary: Mapped[str | None] = mapped_column(Text)  # WKT, display only
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    plots: Mapped[list["GroupPlot"]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )


class GroupPlot(Base):
    __tablename__ = "group_plots"
    __table_args__ = (
        UniqueConstraint("plot_id", "season_id", "year", name="uq_group_plot_season"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    plot_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("plots.id"), nullable=False
    )
    season_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("seasons.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    group: Mapped["Group"] = relationship(back_populates="plots")
