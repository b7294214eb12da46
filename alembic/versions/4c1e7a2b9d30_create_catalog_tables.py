"""create catalog, dependent and reconciliation tables

Revision ID: 4c1e7a2b9d30
Revises:
Create Date: 2026-10-17 09:12:40.118203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "4c1e7a2b9d30"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=True)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.Enum("user", "admin", name="user_role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "plant_types",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("common_name", sa.String(200), nullable=False),
        sa.Column("type_code", sa.String(100), nullable=True),
        _created_at(),
    )
    op.create_index("ix_plant_types_common_name", "plant_types", ["common_name"])

    op.create_table(
        "plant_subcategories",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "plant_type_id", sa.String(32),
            sa.ForeignKey("plant_types.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("subcat_code", sa.String(100), nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("plant_type_id", "subcat_code", name="uq_subcat_code_per_type"),
    )
    op.create_index("ix_plant_subcategories_plant_type_id", "plant_subcategories", ["plant_type_id"])
    op.create_index("ix_plant_subcategories_subcat_code", "plant_subcategories", ["subcat_code"])

    op.create_table(
        "varieties",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("variety_name", sa.String(300), nullable=False),
        sa.Column("variety_code", sa.String(150), nullable=True),
        sa.Column(
            "plant_type_id", sa.String(32),
            sa.ForeignKey("plant_types.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("plant_type_name", sa.String(200), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("plant_subcategory_id", sa.String(32), nullable=True),
        sa.Column("plant_subcategory_code", sa.String(100), nullable=True),
        sa.Column("plant_subcategory_ids", sa.JSON(), nullable=True),
        sa.Column("plant_subcategory_codes", sa.JSON(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("days_to_maturity", sa.Integer(), nullable=True),
        sa.Column("spacing_inches", sa.Float(), nullable=True),
        sa.Column("flavor_profile", sa.Text(), nullable=True),
        sa.Column("growth_habit", sa.String(100), nullable=True),
        sa.Column("sun_requirement", sa.String(50), nullable=True),
        sa.Column("water_requirement", sa.String(50), nullable=True),
        sa.Column("species", sa.String(200), nullable=True),
        sa.Column("seed_line_type", sa.String(50), nullable=True),
        sa.Column("breeder_or_origin", sa.String(300), nullable=True),
        sa.Column("grower_notes", sa.Text(), nullable=True),
        sa.Column("fruit_shape", sa.String(100), nullable=True),
        sa.Column("fruit_size", sa.String(100), nullable=True),
        sa.Column("fruit_color", sa.String(100), nullable=True),
        sa.Column("scoville_min", sa.Integer(), nullable=True),
        sa.Column("scoville_max", sa.Integer(), nullable=True),
        sa.Column("images", sa.JSON(), nullable=True),
        sa.Column("synonyms", sa.JSON(), nullable=True),
        sa.Column("sources", sa.JSON(), nullable=True),
        sa.Column("traits", sa.JSON(), nullable=True),
        sa.Column("extended_data", sa.JSON(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_varieties_variety_name", "varieties", ["variety_name"])
    op.create_index("ix_varieties_variety_code", "varieties", ["variety_code"])
    op.create_index("ix_varieties_plant_type_id", "varieties", ["plant_type_id"])
    op.create_index("ix_varieties_status", "varieties", ["status"])
    op.create_index("ix_varieties_plant_subcategory_id", "varieties", ["plant_subcategory_id"])

    for table in ("plant_profiles", "plant_instances", "grow_lists"):
        extra = {
            "plant_profiles": [
                sa.Column("variety_id", sa.String(32), nullable=True),
                sa.Column("nickname", sa.String(200), nullable=True),
            ],
            "plant_instances": [
                sa.Column("variety_id", sa.String(32), nullable=True),
                sa.Column("garden_name", sa.String(200), nullable=True),
                sa.Column("quantity", sa.Integer(), nullable=False),
            ],
            "grow_lists": [
                sa.Column("name", sa.String(200), nullable=False),
                sa.Column("items", sa.JSON(), nullable=True),
            ],
        }[table]
        op.create_table(
            table,
            sa.Column("id", sa.String(32), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
            *extra,
            _created_at(),
        )
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])
    op.create_index("ix_plant_profiles_variety_id", "plant_profiles", ["variety_id"])
    op.create_index("ix_plant_instances_variety_id", "plant_instances", ["variety_id"])

    op.create_table(
        "reconciliation_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("routine", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("dry_run", sa.Boolean(), nullable=False),
        sa.Column("plant_type_id", sa.String(32), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stats", sa.JSON(), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.Column("triggered_by", sa.String(255), nullable=True),
    )
    op.create_index("ix_reconciliation_runs_routine", "reconciliation_runs", ["routine"])

    op.create_table(
        "api_request_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("endpoint", sa.String(255), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("latency_ms", sa.Integer(), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
    )
    op.create_index("ix_api_request_logs_timestamp", "api_request_logs", ["timestamp"])


def downgrade() -> None:
    op.drop_table("api_request_logs")
    op.drop_table("reconciliation_runs")
    op.drop_table("grow_lists")
    op.drop_table("plant_instances")
    op.drop_table("plant_profiles")
    op.drop_table("varieties")
    op.drop_table("plant_subcategories")
    op.drop_table("plant_types")
    op.drop_table("users")
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS user_role")
