"""initial schema: users, availability, appointments, slot locks

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("role", sa.String(16), nullable=False, server_default=sa.text("'buyer'")),
        sa.Column("meeting_duration", sa.Integer()),
        sa.Column("timezone", sa.Text(), nullable=False, server_default=sa.text("'UTC'")),
        sa.Column("refresh_token_encrypted", sa.Text()),
        sa.Column("google_access_token", sa.Text()),
        sa.Column("google_refresh_token", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "seller_availability",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("seller_id", sa.Text(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Text(), nullable=False),
        sa.Column("end_time", sa.Text(), nullable=False),
    )
    op.create_index("ix_seller_availability_seller_id", "seller_availability", ["seller_id"])

    op.create_table(
        "seller_date_availability",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("seller_id", sa.Text(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Text(), nullable=False),
        sa.Column("end_time", sa.Text(), nullable=False),
        sa.UniqueConstraint("seller_id", "date", name="uq_seller_date_availability"),
    )
    op.create_index("ix_seller_date_availability_seller_id", "seller_date_availability", ["seller_id"])

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("seller_id", sa.Text(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("buyer_id", sa.Text(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("start", sa.DateTime(), nullable=False),
        sa.Column("end", sa.DateTime(), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("timezone", sa.Text(), nullable=False, server_default=sa.text("'UTC'")),
        sa.Column("google_event_id", sa.Text()),
        sa.Column("buyer_google_event_id", sa.Text()),
        sa.Column("meet_link", sa.Text()),
        sa.Column("confirmation_email", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("seller_id", "start", name="uq_appointments_seller_start"),
    )

    op.create_table(
        "slot_locks",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("seller_id", sa.Text(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("buyer_id", sa.Text(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Text(), nullable=False),
        sa.Column("end_time", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'LOCKED'")),
        sa.Column("locked_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("appointment_id", sa.Integer(),
                  sa.ForeignKey("appointments.id", ondelete="SET NULL")),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index(
        "uq_slot_locks_active_identity",
        "slot_locks",
        ["seller_id", "date", "start_time"],
        unique=True,
        sqlite_where=sa.text("status != 'CANCELLED'"),
        postgresql_where=sa.text("status != 'CANCELLED'"),
    )
    op.create_index("ix_slot_locks_status_expires", "slot_locks", ["status", "expires_at"])


def downgrade() -> None:
    op.drop_index("ix_slot_locks_status_expires", table_name="slot_locks")
    op.drop_index("uq_slot_locks_active_identity", table_name="slot_locks")
    op.drop_table("slot_locks")
    op.drop_table("appointments")
    op.drop_index("ix_seller_date_availability_seller_id", table_name="seller_date_availability")
    op.drop_table("seller_date_availability")
    op.drop_index("ix_seller_availability_seller_id", table_name="seller_availability")
    op.drop_table("seller_availability")
    op.drop_table("users")
