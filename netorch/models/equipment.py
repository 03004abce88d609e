import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Enum, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netorch.db import Base


class EquipmentType(enum.Enum):
    router = "router"
    switch = "switch"
    access_point = "access_point"
    other = "other"


class DeviceStatus(enum.Enum):
    online = "online"
    offline = "offline"
    unknown = "unknown"


class ApprovalStatus(enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class Equipment(Base):
    """Network device catalog entry (router, switch, access point).

    Devices are never hard-deleted while referenced by client assignments;
    retiring a device clears ``is_active``.
    """

    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), index=True)
    brand: Mapped[str | None] = mapped_column(String(120))
    model: Mapped[str | None] = mapped_column(String(120))
    type: Mapped[EquipmentType] = mapped_column(
        Enum(EquipmentType, values_callable=lambda x: [e.value for e in x]),
        default=EquipmentType.other,
    )
    serial_number: Mapped[str | None] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(Text)

    # Management credentials
    api_username: Mapped[str | None] = mapped_column(String(120))
    api_password: Mapped[str | None] = mapped_column(String(255))
    api_port: Mapped[int | None] = mapped_column(Integer)
    snmp_community: Mapped[str | None] = mapped_column(String(120))
    snmp_version: Mapped[str | None] = mapped_column(String(10))
    snmp_port: Mapped[int | None] = mapped_column(Integer)

    status: Mapped[DeviceStatus] = mapped_column(
        Enum(DeviceStatus, values_callable=lambda x: [e.value for e in x]),
        default=DeviceStatus.unknown,
    )
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, values_callable=lambda x: [e.value for e in x]),
        default=ApprovalStatus.approved,
    )
    auto_discovered: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assignments = relationship("ClientEquipment", back_populates="equipment")
