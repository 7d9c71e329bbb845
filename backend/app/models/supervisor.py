import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Supervisor(Base):
    __tablename__ = "supervisors"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    cluster_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clusters.id"), nullable=False, index=True
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # ── Capacity ─────────────────────────────────────────────
    # Running totals are only changed by group commit
    max_farmer_capacity: Mapped[int] = mapped_column(Integer, default=10)
    current_farmer_count: Mapped[int] = mapped_column(Integer, default=0)
    max_area_capacity: Mapped[float | None] = mapped_column(Float)  # hectares
    current_total_area: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
