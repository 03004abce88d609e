"""Create equipment, client, usage and network event tables.

Revision ID: 0001_network_orchestration
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_network_orchestration"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

equipment_type = sa.Enum("router", "switch", "access_point", "other", name="equipmenttype")
device_status = sa.Enum("online", "offline", "unknown", name="devicestatus")
approval_status = sa.Enum("pending", "approved", "rejected", name="approvalstatus")
client_status = sa.Enum("pending", "active", "suspended", "disconnected", name="clientstatus")


def upgrade() -> None:
    op.create_table(
        "equipment",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("brand", sa.String(120), nullable=True),
        sa.Column("model", sa.String(120), nullable=True),
        sa.Column("type", equipment_type, nullable=True),
        sa.Column("serial_number", sa.String(120), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("api_username", sa.String(120), nullable=True),
        sa.Column("api_password", sa.String(255), nullable=True),
        sa.Column("api_port", sa.Integer(), nullable=True),
        sa.Column("snmp_community", sa.String(120), nullable=True),
        sa.Column("snmp_version", sa.String(10), nullable=True),
        sa.Column("snmp_port", sa.Integer(), nullable=True),
        sa.Column("status", device_status, nullable=True),
        sa.Column("approval_status", approval_status, nullable=True),
        sa.Column("auto_discovered", sa.Boolean(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_equipment_ip_address", "equipment", ["ip_address"])

    op.create_table(
        "service_packages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("speed", sa.String(60), nullable=False),
        sa.Column("upload_speed", sa.String(60), nullable=True),
        sa.Column("data_cap_gb", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("status", client_status, nullable=True),
        sa.Column("service_package_id", sa.Uuid(), sa.ForeignKey("service_packages.id"), nullable=True),
        sa.Column("pppoe_username", sa.String(120), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "client_equipment",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("equipment_id", sa.Uuid(), sa.ForeignKey("equipment.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("client_id", "equipment_id", name="uq_client_equipment"),
    )
    op.create_index("ix_client_equipment_client_id", "client_equipment", ["client_id"])
    op.create_index("ix_client_equipment_equipment_id", "client_equipment", ["equipment_id"])

    op.create_table(
        "usage_samples",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("equipment_id", sa.Uuid(), sa.ForeignKey("equipment.id"), nullable=True),
        sa.Column("bytes_in", sa.BigInteger(), nullable=True),
        sa.Column("bytes_out", sa.BigInteger(), nullable=True),
        sa.Column("sampled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_usage_samples_client_sampled", "usage_samples", ["client_id", "sampled_at"])

    op.create_table(
        "network_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("client_id", sa.Uuid(), nullable=True),
        sa.Column("equipment_id", sa.Uuid(), nullable=True),
        sa.Column("event_type", sa.String(60), nullable=False),
        sa.Column("triggered_by", sa.String(120), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_network_events_client_id", "network_events", ["client_id"])
    op.create_index("ix_network_events_equipment_id", "network_events", ["equipment_id"])
    op.create_index("ix_network_events_event_type", "network_events", ["event_type"])
    op.create_index("ix_network_events_created_at", "network_events", ["created_at"])


def downgrade() -> None:
    op.drop_table("network_events")
    op.drop_table("usage_samples")
    op.drop_table("client_equipment")
    op.drop_table("clients")
    op.drop_table("service_packages")
    op.drop_table("equipment")
    bind = op.get_bind()
    for enum in (client_status, approval_status, device_status, equipment_type):
        enum.drop(bind, checkfirst=True)
