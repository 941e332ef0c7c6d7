"""Initial schema: requesters, drivers, ride orders, route history, ledger.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

VEHICLE_CLASSES = ("CAR", "SUV", "LUXURY", "MINI_TRUCK", "HEAVY_VEHICLE")
ROLES = ("REQUESTER", "DRIVER", "ADMIN")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # ── requesters ────────────────────────────────────────────────────
    op.create_table(
        "requesters",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("wallet_balance", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("is_approved", sa.Boolean, nullable=False),
        sa.Column("is_blocked", sa.Boolean, nullable=False),
        sa.Column("is_online", sa.Boolean, nullable=False),
        sa.Column("vehicle_skills", sa.JSON, nullable=False),
        sa.Column("home_lat", sa.Float, nullable=True),
        sa.Column("home_lng", sa.Float, nullable=True),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column(
            "subscription_expires_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("rides_assigned", sa.Integer, nullable=False),
        sa.Column("ride_limit", sa.Integer, nullable=False),
        sa.Column("speed_violation_count", sa.Integer, nullable=False),
        sa.Column("total_rides_completed", sa.Integer, nullable=False),
        sa.Column("total_earnings", sa.Numeric(12, 2), nullable=False),
        sa.Column("wallet_balance", sa.Numeric(12, 2), nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_drivers_cell_online", "drivers", ["h3_cell", "is_online"])

    # ── ride_orders ───────────────────────────────────────────────────
    op.create_table(
        "ride_orders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "requester_id",
            sa.Integer,
            sa.ForeignKey("requesters.id"),
            nullable=False,
        ),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True
        ),
        sa.Column(
            "vehicle_class",
            sa.Enum(*VEHICLE_CLASSES, name="vehicleclass"),
            nullable=False,
        ),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_address", sa.String(255), nullable=True),
        sa.Column("drop_lat", sa.Float, nullable=False),
        sa.Column("drop_lng", sa.Float, nullable=False),
        sa.Column("drop_address", sa.String(255), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "SEARCHING",
                "ACCEPTED",
                "ACTIVE",
                "COMPLETED",
                "CANCELLED",
                name="ridestatus",
            ),
            nullable=False,
        ),
        sa.Column("is_round_trip", sa.Boolean, nullable=False),
        sa.Column("is_return_leg", sa.Boolean, nullable=False),
        sa.Column("turnaround_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("driver_reached_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.Enum(*ROLES, name="role"), nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column("ride_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ride_start_lat", sa.Float, nullable=True),
        sa.Column("ride_start_lng", sa.Float, nullable=True),
        sa.Column("ride_ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ride_end_lat", sa.Float, nullable=True),
        sa.Column("ride_end_lng", sa.Float, nullable=True),
        sa.Column("hourly_rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("ride_hours", sa.Numeric(6, 1), nullable=True),
        sa.Column("base_fare", sa.Numeric(12, 2), nullable=True),
        sa.Column("return_distance_km", sa.Numeric(8, 1), nullable=True),
        sa.Column("return_charges", sa.Numeric(12, 2), nullable=True),
        sa.Column("final_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("platform_commission", sa.Numeric(12, 2), nullable=True),
        sa.Column("driver_earnings", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "drop_classification",
            sa.Enum(
                "VALID_DROP",
                "RETURNED_TO_PICKUP",
                "RETURN_CHARGED",
                name="dropclassification",
            ),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("idx_orders_status", "ride_orders", ["status"])
    op.create_index("idx_orders_requester", "ride_orders", ["requester_id"])
    op.create_index("idx_orders_driver", "ride_orders", ["driver_id"])
    op.create_index("idx_orders_idempotency", "ride_orders", ["idempotency_key"])

    # ── route_points ──────────────────────────────────────────────────
    op.create_table(
        "route_points",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            sa.Integer,
            sa.ForeignKey("ride_orders.id"),
            nullable=False,
        ),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("speed", sa.Float, nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_route_points_order", "route_points", ["order_id", "id"])

    # ── speed_violations ──────────────────────────────────────────────
    op.create_table(
        "speed_violations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            sa.Integer,
            sa.ForeignKey("ride_orders.id"),
            nullable=False,
        ),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False
        ),
        sa.Column(
            "requester_id",
            sa.Integer,
            sa.ForeignKey("requesters.id"),
            nullable=True,
        ),
        sa.Column("speed", sa.Float, nullable=False),
        sa.Column("max_allowed", sa.Float, nullable=False),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("notified_requester", sa.Boolean, nullable=False),
        sa.Column("notified_admin", sa.Boolean, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_violations_driver", "speed_violations", ["driver_id"])
    op.create_index("idx_violations_order", "speed_violations", ["order_id"])

    # ── wallet_transactions ───────────────────────────────────────────
    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "account_role",
            postgresql.ENUM(*ROLES, name="role", create_type=False),
            nullable=False,
        ),
        sa.Column("account_id", sa.Integer, nullable=False),
        sa.Column(
            "entry_type",
            sa.Enum("DEBIT", "CREDIT", name="ledgerentrytype"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column(
            "order_id",
            sa.Integer,
            sa.ForeignKey("ride_orders.id"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_wallet_account", "wallet_transactions", ["account_role", "account_id"]
    )


def downgrade() -> None:
    op.drop_table("wallet_transactions")
    op.drop_table("speed_violations")
    op.drop_table("route_points")
    op.drop_table("ride_orders")
    op.drop_table("drivers")
    op.drop_table("requesters")
    for enum_name in (
        "ridestatus",
        "vehicleclass",
        "dropclassification",
        "role",
        "ledgerentrytype",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
