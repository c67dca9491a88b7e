"""create bms_data

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00

"""
from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "bms_data",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_voltage", sa.Float(), nullable=True),
        sa.Column("current", sa.Float(), nullable=True),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("remaining_capacity", sa.Float(), nullable=True),
        sa.Column("charge_fet_status", sa.Boolean(), nullable=True),
        sa.Column("discharge_fet_status", sa.Boolean(), nullable=True),
        sa.Column("cell_voltages", sa.Text(), nullable=True),
    )
    op.create_index("ix_bms_data_id", "bms_data", ["id"])
    op.create_index("ix_bms_data_timestamp", "bms_data", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_bms_data_timestamp", table_name="bms_data")
    op.drop_index("ix_bms_data_id", table_name="bms_data")
    op.drop_table("bms_data")
