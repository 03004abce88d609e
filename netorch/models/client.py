import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netorch.db import Base


class ClientStatus(enum.Enum):
    pending = "pending"
    active = "active"
    suspended = "suspended"
    disconnected = "disconnected"


class ServicePackage(Base):
    __tablename__ = "service_packages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    # Advertised download speed, e.g. "50 Mbps"
    speed: Mapped[str] = mapped_column(String(60), nullable=False)
    # Optional explicit upload speed; defaults to a ratio of the download speed
    upload_speed: Mapped[str | None] = mapped_column(String(60))
    data_cap_gb: Mapped[float | None] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    clients = relationship("Client", back_populates="service_package")


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    status: Mapped[ClientStatus] = mapped_column(
        Enum(ClientStatus, values_callable=lambda x: [e.value for e in x]),
        default=ClientStatus.pending,
    )
    service_package_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("service_packages.id")
    )
    pppoe_username: Mapped[str | None] = mapped_column(String(120))
    ip_address: Mapped[str | None] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    service_package = relationship("ServicePackage", back_populates="clients")
    equipment_assignments = relationship("ClientEquipment", back_populates="client")


class ClientEquipment(Base):
    """Devices a client's traffic flows through (concentrator, access switch)."""

    __tablename__ = "client_equipment"
    __table_args__ = (
        UniqueConstraint("client_id", "equipment_id", name="uq_client_equipment"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id"), nullable=False, index=True
    )
    equipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("equipment.id"), nullable=False, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    client = relationship("Client", back_populates="equipment_assignments")
    equipment = relationship("Equipment", back_populates="assignments")
