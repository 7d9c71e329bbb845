"""Farmers, their plots, and per-season cultivation selections."""

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


class PlotStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING_POLYGON = "pending_polygon"
    INACTIVE = "inactive"


class Farmer(Base):
    __tablename__ = "farmers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    cluster_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clusters.id"), nullable=False, index=True
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    farm_code: Mapped[str | None] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    plots: Mapped[list["Plot"]] = relationship(back_populates="farmer")


class Plot(Base):
    __tablename__ = "plots"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    farmer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("farmers.id"), nullable=False, index=True
    )

    # ── Geometry (EPSG:4326) ─────────────────────────────────
    # Polygon as WKT or GeoJSON text; null until a boundary is drawn
    boundary: Mapped[str | None] = mapped_column(Text)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)

    area: Mapped[float] = mapped_column(Float, nullable=False)  # hectares
    soil_type: Mapped[str | None] = mapped_column(String(100))
    so_thua: Mapped[int | None] = mapped_column(Integer)  # land parcel number
    so_to: Mapped[int | None] = mapped_column(Integer)  # map sheet number
    status: Mapped[str] = mapped_column(
        String(30), default=PlotStatus.ACTIVE.value
    )  # active | pending_polygon | inactive
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    farmer: Mapped["Farmer"] = relationship(back_populates="plots")


class PlotCultivation(Base):
    """A plot's confirmed rice variety and planting date for one season instance."""

    __tablename__ = "plot_cultivations"
    __table_args__ = (
        UniqueConstraint("plot_id", "season_id", "year", name="uq_plot_cultivation_season"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    plot_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("plots.id"), nullable=False, index=True
    )
    season_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("seasons.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    rice_variety_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rice_varieties.id"), nullable=False
    )
    planting_date: Mapped[date | None] = mapped_column(Date)
    is_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
