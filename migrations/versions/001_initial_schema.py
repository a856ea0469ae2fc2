"""Initial schema: riders, vehicles, scoring configs, pools and memberships.

Points are stored as lat/lng pairs plus an H3 cell column; the B-Tree
indexes on the cell columns back radius pre-filtering.

Revision ID: 001
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

# Created once up front; shared by several tables.
gender = postgresql.ENUM("MALE", "FEMALE", name="gender", create_type=False)
vehicle_type = postgresql.ENUM("CAR", "CNG", name="vehicletype", create_type=False)
gender_restriction = postgresql.ENUM(
    "FEMALE_ONLY", "ANY", name="genderrestriction", create_type=False
)
pool_status = postgresql.ENUM(
    "WAITING_FOR_RIDERS",
    "WAITING_FOR_DRIVER",
    "READY_TO_START",
    "STARTED",
    "COMPLETED",
    "CANCELLED",
    name="poolstatus",
    create_type=False,
)
ride_status = postgresql.ENUM(
    "CREATING_POOL",
    "IN_POOL",
    "DRIVER_ASSIGNED",
    "STARTED",
    "COMPLETED",
    "CANCELLED",
    name="ridestatus",
    create_type=False,
)
join_type = postgresql.ENUM("INITIAL", "DYNAMIC", name="jointype", create_type=False)

ENUMS = (gender, vehicle_type, gender_restriction, pool_status, ride_status, join_type)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("gender", gender, nullable=True),
        sa.Column("is_driver", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("priority_destination_lat", sa.Float, nullable=True),
        sa.Column("priority_destination_lng", sa.Float, nullable=True),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vehicle_type", vehicle_type, nullable=False),
        sa.Column("vehicle_number", sa.String(20), unique=True, nullable=False),
        sa.Column("max_passengers", sa.Integer, nullable=False, server_default="4"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint(
            "max_passengers > 0 AND max_passengers <= 8", name="ck_vehicle_capacity"
        ),
    )
    op.create_index("idx_vehicles_driver", "vehicles", ["driver_id"])

    # ── scoring_configs ───────────────────────────────────────────────
    op.create_table(
        "scoring_configs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("config_name", sa.String(100), nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("min_viable_score", sa.Float, nullable=False, server_default="60"),
        sa.Column("destination_proximity_weight", sa.Float, nullable=False, server_default="30"),
        sa.Column("pickup_proximity_weight", sa.Float, nullable=False, server_default="25"),
        sa.Column("route_overlap_weight", sa.Float, nullable=False, server_default="20"),
        sa.Column("time_alignment_weight", sa.Float, nullable=False, server_default="15"),
        sa.Column("detour_penalty_weight", sa.Float, nullable=False, server_default="10"),
        sa.Column("max_destination_distance_km", sa.Float, nullable=False, server_default="2"),
        sa.Column("max_pickup_distance_km", sa.Float, nullable=False, server_default="5"),
        sa.Column("min_route_overlap_percent", sa.Float, nullable=False, server_default="40"),
        sa.Column("max_detour_percent", sa.Float, nullable=False, server_default="30"),
        sa.Column("max_time_difference_minutes", sa.Integer, nullable=False, server_default="10"),
        sa.Column("front_route_only", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("max_off_route_distance_km", sa.Float, nullable=False, server_default="0.5"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("config_name", "version", name="uq_scoring_config_version"),
    )

    # ── pools ─────────────────────────────────────────────────────────
    op.create_table(
        "pools",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("creator_user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column(
            "status",
            pool_status,
            nullable=False,
            server_default="WAITING_FOR_RIDERS",
        ),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("hexagon_region_id", sa.String(20), nullable=False),
        sa.Column("vehicle_type", vehicle_type, nullable=False),
        sa.Column("gender_restriction", gender_restriction, nullable=False, server_default="ANY"),
        sa.Column("current_passengers", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_passengers", sa.Integer, nullable=False, server_default="4"),
        sa.Column("min_passengers_to_start", sa.Integer, nullable=False, server_default="2"),
        sa.Column("route_stops", sa.JSON, nullable=True),
        sa.Column("viability_score", sa.Float, nullable=True),
        sa.Column("score_breakdown", sa.JSON, nullable=True),
        sa.Column(
            "scoring_config_id",
            sa.Integer,
            sa.ForeignKey("scoring_configs.id"),
            nullable=False,
        ),
        sa.Column("fare_per_person", sa.Float, nullable=True),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.CheckConstraint("current_passengers >= 0", name="ck_pool_nonnegative"),
        sa.CheckConstraint("current_passengers <= max_passengers", name="ck_pool_capacity"),
        sa.CheckConstraint(
            "min_passengers_to_start >= 1 AND min_passengers_to_start <= max_passengers",
            name="ck_pool_min_capacity",
        ),
        sa.CheckConstraint(
            "status NOT IN ('STARTED', 'COMPLETED') OR driver_id IS NOT NULL",
            name="ck_pool_driver_when_started",
        ),
        sa.CheckConstraint(
            "started_at IS NULL OR started_at >= created_at", name="ck_pool_started"
        ),
        sa.CheckConstraint(
            "completed_at IS NULL OR started_at IS NULL OR completed_at > started_at",
            name="ck_pool_completed",
        ),
    )
    op.create_index("idx_pools_region_status", "pools", ["hexagon_region_id", "status"])
    op.create_index("idx_pools_status", "pools", ["status"])
    op.create_index("idx_pools_driver", "pools", ["driver_id"])
    op.create_index(
        "uq_pools_active_driver",
        "pools",
        ["driver_id"],
        unique=True,
        postgresql_where=sa.text(
            "driver_id IS NOT NULL AND status NOT IN ('COMPLETED', 'CANCELLED')"
        ),
    )
    op.create_index(
        "idx_pools_search", "pools", ["vehicle_type", "status", "gender_restriction"]
    )

    # ── vehicle_locations ─────────────────────────────────────────────
    op.create_table(
        "vehicle_locations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("pool_id", sa.Integer, sa.ForeignKey("pools.id"), nullable=True),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lng", sa.Float, nullable=False),
        sa.Column("cell", sa.String(20), nullable=False),
        sa.Column("heading", sa.Float, nullable=True),
        sa.Column("speed_kmh", sa.Float, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("recorded_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "heading IS NULL OR (heading >= 0 AND heading < 360)",
            name="ck_location_heading",
        ),
        sa.CheckConstraint("speed_kmh IS NULL OR speed_kmh >= 0", name="ck_location_speed"),
    )
    op.create_index(
        "idx_vehicle_locations_active", "vehicle_locations", ["vehicle_id", "is_active"]
    )
    op.create_index(
        "idx_vehicle_locations_cell",
        "vehicle_locations",
        ["cell", "is_active", "is_available"],
    )
    op.create_index("idx_vehicle_locations_pool", "vehicle_locations", ["pool_id"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("pool_id", sa.Integer, sa.ForeignKey("pools.id"), nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_cell", sa.String(20), nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("vehicle_type", vehicle_type, nullable=False),
        sa.Column("gender_preference", gender_restriction, nullable=False, server_default="ANY"),
        sa.Column(
            "status",
            ride_status,
            nullable=False,
            server_default="CREATING_POOL",
        ),
        sa.Column("fare", sa.Float, nullable=True),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column("is_on_front_route", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("route_deviation_km", sa.Float, nullable=True),
        sa.Column("cancelled_reason", sa.Text, nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
    )
    op.create_index("idx_rides_user_status", "rides", ["user_id", "status"])
    op.create_index("idx_rides_pool", "rides", ["pool_id"])
    op.create_index("idx_rides_pickup_cell", "rides", ["pickup_cell"])

    # ── pool_members ──────────────────────────────────────────────────
    op.create_table(
        "pool_members",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("pool_id", sa.Integer, sa.ForeignKey("pools.id"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column(
            "join_type",
            join_type,
            nullable=False,
            server_default="INITIAL",
        ),
        sa.Column("join_score", sa.Float, nullable=True),
        sa.Column("join_score_breakdown", sa.JSON, nullable=True),
        sa.Column(
            "is_front_route_passenger", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column("joined_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("left_at", sa.DateTime, nullable=True),
        sa.UniqueConstraint("pool_id", "user_id", name="uq_pool_member_user"),
        sa.UniqueConstraint("ride_id", name="uq_pool_member_ride"),
    )
    op.create_index("idx_pool_members_pool_active", "pool_members", ["pool_id", "left_at"])

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id", "is_read"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("pool_members")
    op.drop_table("rides")
    op.drop_table("vehicle_locations")
    op.drop_table("pools")
    op.drop_table("scoring_configs")
    op.drop_table("vehicles")
    op.drop_table("users")
    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
