"""Initial schema: reference data, farmers, plots, supervisors, groups.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Run with:
    alembic upgrade head
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Reference data ───────────────────────────────────────

    op.create_table(
        "clusters",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("cluster_name", sa.String(255), nullable=False),
        sa.Column("province", sa.String(100), nullable=True),
        sa.Column("district", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "seasons",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("season_name", sa.String(100), nullable=False),
        sa.Column("start_month", sa.Integer(), nullable=True),
        sa.Column("end_month", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
    )

    op.create_table(
        "rice_varieties",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("variety_name", sa.String(255), nullable=False),
        sa.Column("base_growth_duration_days", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
    )

    # ── Farmers and plots ────────────────────────────────────

    op.create_table(
        "farmers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("cluster_id", sa.String(36), sa.ForeignKey("clusters.id"), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("farm_code", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_farmers_cluster_id", "farmers", ["cluster_id"])

    op.create_table(
        "plots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("farmer_id", sa.String(36), sa.ForeignKey("farmers.id"), nullable=False),
        sa.Column("boundary", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("area", sa.Float(), nullable=False),
        sa.Column("soil_type", sa.String(100), nullable=True),
        sa.Column("so_thua", sa.Integer(), nullable=True),
        sa.Column("so_to", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(30), server_default="active"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_plots_farmer_id", "plots", ["farmer_id"])

    op.create_table(
        "plot_cultivations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("plot_id", sa.String(36), sa.ForeignKey("plots.id"), nullable=False),
        sa.Column("season_id", sa.String(36), sa.ForeignKey("seasons.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("rice_variety_id", sa.String(36), sa.ForeignKey("rice_varieties.id"), nullable=False),
        sa.Column("planting_date", sa.Date(), nullable=True),
        sa.Column("is_confirmed", sa.Boolean(), server_default="false"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("plot_id", "season_id", "year", name="uq_plot_cultivation_season"),
    )
    op.create_index("ix_plot_cultivations_plot_id", "plot_cultivations", ["plot_id"])

    # ── Supervisors ──────────────────────────────────────────

    op.create_table(
        "supervisors",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("cluster_id", sa.String(36), sa.ForeignKey("clusters.id"), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("max_farmer_capacity", sa.Integer(), server_default="10"),
        sa.Column("current_farmer_count", sa.Integer(), server_default="0"),
        sa.Column("max_area_capacity", sa.Float(), nullable=True),
        sa.Column("current_total_area", sa.Float(), server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_supervisors_cluster_id", "supervisors", ["cluster_id"])

    # ── Groups ───────────────────────────────────────────────

    op.create_table(
        "groups",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("group_name", sa.String(100), nullable=False),
        sa.Column("cluster_id", sa.String(36), sa.ForeignKey("clusters.id"), nullable=False),
        sa.Column("season_id", sa.String(36), sa.ForeignKey("seasons.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("rice_variety_id", sa.String(36), sa.ForeignKey("rice_varieties.id"), nullable=False),
        sa.Column("supervisor_id", sa.String(36), sa.ForeignKey("supervisors.id"), nullable=True),
        sa.Column("planting_date", sa.Date(), nullable=True),
        sa.Column("planting_window_start", sa.Date(), nullable=True),
        sa.Column("planting_window_end", sa.Date(), nullable=True),
        sa.Column("status", sa.String(20), server_default="draft"),
        sa.Column("is_exception", sa.Boolean(), server_default="false"),
        sa.Column("exception_reason", sa.String(255), nullable=True),
        sa.Column("total_area", sa.Float(), server_default="0"),
        sa.Column("boundary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_groups_cluster_id", "groups", ["cluster_id"])

    op.create_table(
        "group_plots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "group_id", sa.String(36),
            sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("plot_id", sa.String(36), sa.ForeignKey("plots.id"), nullable=False),
        sa.Column("season_id", sa.String(36), sa.ForeignKey("seasons.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.UniqueConstraint("plot_id", "season_id", "year", name="uq_group_plot_season"),
    )
    op.create_index("ix_group_plots_group_id", "group_plots", ["group_id"])


def downgrade() -> None:
    op.drop_table("group_plots")
    op.drop_table("groups")
    op.drop_table("supervisors")
    op.drop_table("plot_cultivations")
    op.drop_table("plots")
    op.drop_table("farmers")
    op.drop_table("rice_varieties")
    op.drop_table("seasons")
    op.drop_table("clusters")
