"""Persistent store access for the orchestration layer.

``NetworkStore`` is the small query/update surface this layer needs from the
relational database. Every call opens its own session and returns pydantic
read models, so callers always work from freshly read state and never hold
ORM rows across awaits.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from netorch.db import SessionLocal
from netorch.models.client import Client, ClientEquipment, ClientStatus, ServicePackage
from netorch.models.equipment import ApprovalStatus, DeviceStatus, Equipment
from netorch.models.network_event import NetworkEvent
from netorch.models.usage import UsageSample
from netorch.schemas.network import (
    ClientRead,
    DeviceRead,
    DiscoveredDevice,
    ServicePackageRead,
)
from netorch.schemas.network_events import (
    NetworkEventCreate,
    NetworkEventRead,
    NetworkEventType,
    payload_adapter,
)
from netorch.services.common import coerce_uuid, ensure_utc, utcnow

logger = logging.getLogger(__name__)


def _device_read(row: Equipment) -> DeviceRead:
    device = DeviceRead.model_validate(row)
    if device.last_seen_at is not None:
        device = device.model_copy(update={"last_seen_at": ensure_utc(device.last_seen_at)})
    return device


def _event_read(row: NetworkEvent) -> NetworkEventRead:
    return NetworkEventRead(
        id=row.id,
        client_id=row.client_id,
        equipment_id=row.equipment_id,
        event_type=NetworkEventType(row.event_type),
        triggered_by=row.triggered_by,
        success=row.success,
        created_at=ensure_utc(row.created_at),
        payload=payload_adapter.validate_python(row.event_data),
    )


class NetworkStore:
    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory or SessionLocal

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def _managed_devices_stmt(self):
        return (
            select(Equipment)
            .where(Equipment.approval_status == ApprovalStatus.approved)
            .where(Equipment.is_active.is_(True))
            .where(Equipment.ip_address.is_not(None))
            .where(Equipment.ip_address != "")
        )

    def list_managed_devices(self) -> list[DeviceRead]:
        """Approved, active, IP-addressed devices."""
        with self.session() as db:
            rows = db.scalars(self._managed_devices_stmt().order_by(Equipment.name)).all()
            return [_device_read(row) for row in rows]

    def get_device(self, device_id: UUID | str) -> DeviceRead | None:
        with self.session() as db:
            row = db.get(Equipment, coerce_uuid(device_id))
            return _device_read(row) if row else None

    def known_addresses(self) -> set[str]:
        """Every catalogued address, including pending and retired devices."""
        with self.session() as db:
            rows = db.scalars(
                select(Equipment.ip_address).where(Equipment.ip_address.is_not(None))
            ).all()
            return {row for row in rows if row}

    def update_device_status(
        self,
        device_id: UUID | str,
        status: DeviceStatus,
        last_seen_at: datetime | None = None,
    ) -> None:
        with self.session() as db:
            row = db.get(Equipment, coerce_uuid(device_id))
            if not row:
                logger.warning("Device %s vanished before status update", device_id)
                return
            row.status = status
            if last_seen_at is not None:
                row.last_seen_at = last_seen_at
            db.commit()

    def create_discovered_device(self, discovered: DiscoveredDevice) -> DeviceRead:
        with self.session() as db:
            row = Equipment(
                name=discovered.name or f"Device-{discovered.ip_address}",
                ip_address=discovered.ip_address,
                brand=discovered.brand,
                model=discovered.model,
                type=discovered.type,
                description=discovered.description,
                status=DeviceStatus.online,
                approval_status=ApprovalStatus.pending,
                auto_discovered=True,
                last_seen_at=utcnow(),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            logger.info("Registered discovered device %s at %s", row.id, row.ip_address)
            return _device_read(row)

    # ------------------------------------------------------------------
    # Clients and packages
    # ------------------------------------------------------------------

    def get_client(self, client_id: UUID | str) -> ClientRead | None:
        with self.session() as db:
            row = db.get(Client, coerce_uuid(client_id))
            return ClientRead.model_validate(row) if row else None

    def get_service_package(self, package_id: UUID | str) -> ServicePackageRead | None:
        with self.session() as db:
            row = db.get(ServicePackage, coerce_uuid(package_id))
            return ServicePackageRead.model_validate(row) if row else None

    def list_client_devices(self, client_id: UUID | str) -> list[DeviceRead]:
        """Managed devices currently assigned to a client."""
        with self.session() as db:
            stmt = (
                self._managed_devices_stmt()
                .join(ClientEquipment, ClientEquipment.equipment_id == Equipment.id)
                .where(ClientEquipment.client_id == coerce_uuid(client_id))
                .where(ClientEquipment.is_active.is_(True))
                .order_by(Equipment.name)
            )
            return [_device_read(row) for row in db.scalars(stmt).all()]

    def list_entitled_clients(self) -> list[ClientRead]:
        """Active clients holding a service package."""
        with self.session() as db:
            rows = db.scalars(
                select(Client)
                .where(Client.status == ClientStatus.active)
                .where(Client.service_package_id.is_not(None))
            ).all()
            return [ClientRead.model_validate(row) for row in rows]

    def list_capped_clients(self) -> list[tuple[ClientRead, ServicePackageRead]]:
        """Active clients whose package carries a data cap."""
        with self.session() as db:
            rows = db.execute(
                select(Client, ServicePackage)
                .join(ServicePackage, Client.service_package_id == ServicePackage.id)
                .where(Client.status == ClientStatus.active)
                .where(ServicePackage.data_cap_gb.is_not(None))
                .where(ServicePackage.data_cap_gb > 0)
            ).all()
            return [
                (ClientRead.model_validate(client), ServicePackageRead.model_validate(package))
                for client, package in rows
            ]

    def set_client_status(self, client_id: UUID | str, status: ClientStatus) -> None:
        with self.session() as db:
            row = db.get(Client, coerce_uuid(client_id))
            if not row:
                raise LookupError(f"Client {client_id} not found")
            row.status = status
            db.commit()
            logger.info("Client %s status set to %s", client_id, status.value)

    # ------------------------------------------------------------------
    # Usage samples
    # ------------------------------------------------------------------

    def add_usage_sample(
        self,
        client_id: UUID | str,
        bytes_in: int,
        bytes_out: int,
        sampled_at: datetime | None = None,
        equipment_id: UUID | str | None = None,
    ) -> None:
        with self.session() as db:
            db.add(
                UsageSample(
                    client_id=coerce_uuid(client_id),
                    equipment_id=coerce_uuid(equipment_id),
                    bytes_in=bytes_in,
                    bytes_out=bytes_out,
                    sampled_at=sampled_at or utcnow(),
                )
            )
            db.commit()

    def usage_since(self, client_id: UUID | str, since: datetime) -> tuple[int, int]:
        """Summed (bytes_in, bytes_out) of a client's samples at or after ``since``."""
        with self.session() as db:
            row = db.execute(
                select(
                    func.coalesce(func.sum(UsageSample.bytes_in), 0),
                    func.coalesce(func.sum(UsageSample.bytes_out), 0),
                )
                .where(UsageSample.client_id == coerce_uuid(client_id))
                .where(UsageSample.sampled_at >= ensure_utc(since))
            ).one()
            return int(row[0]), int(row[1])

    def top_usage_since(self, since: datetime, limit: int = 10) -> list[tuple[UUID, int, int]]:
        with self.session() as db:
            total = func.sum(UsageSample.bytes_in + UsageSample.bytes_out)
            rows = db.execute(
                select(
                    UsageSample.client_id,
                    func.sum(UsageSample.bytes_in),
                    func.sum(UsageSample.bytes_out),
                )
                .where(UsageSample.sampled_at >= ensure_utc(since))
                .group_by(UsageSample.client_id)
                .order_by(total.desc())
                .limit(limit)
            ).all()
            return [(client_id, int(b_in or 0), int(b_out or 0)) for client_id, b_in, b_out in rows]

    # ------------------------------------------------------------------
    # Network events
    # ------------------------------------------------------------------

    def append_event(self, event: NetworkEventCreate) -> NetworkEventRead:
        with self.session() as db:
            row = NetworkEvent(
                client_id=event.client_id,
                equipment_id=event.equipment_id,
                event_type=event.event_type.value,
                triggered_by=event.triggered_by,
                event_data=event.payload.model_dump(mode="json"),
                success=event.success,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return _event_read(row)

    def list_events(
        self,
        client_id: UUID | str | None = None,
        equipment_id: UUID | str | None = None,
        event_type: NetworkEventType | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[NetworkEventRead]:
        """Matching events, newest first."""
        with self.session() as db:
            stmt = select(NetworkEvent)
            if client_id is not None:
                stmt = stmt.where(NetworkEvent.client_id == coerce_uuid(client_id))
            if equipment_id is not None:
                stmt = stmt.where(NetworkEvent.equipment_id == coerce_uuid(equipment_id))
            if event_type is not None:
                stmt = stmt.where(NetworkEvent.event_type == event_type.value)
            if since is not None:
                stmt = stmt.where(NetworkEvent.created_at >= ensure_utc(since))
            stmt = stmt.order_by(NetworkEvent.created_at.desc()).limit(limit)
            return [_event_read(row) for row in db.scalars(stmt).all()]
