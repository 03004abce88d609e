from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from netorch.models.client import ClientStatus
from netorch.models.equipment import ApprovalStatus, DeviceStatus, EquipmentType


class DeviceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    ip_address: str | None = None
    brand: str | None = None
    model: str | None = None
    type: EquipmentType = EquipmentType.other
    status: DeviceStatus = DeviceStatus.unknown
    approval_status: ApprovalStatus = ApprovalStatus.approved
    is_active: bool = True
    last_seen_at: datetime | None = None
    api_username: str | None = None
    api_password: str | None = Field(default=None, repr=False)
    api_port: int | None = None
    snmp_community: str | None = Field(default=None, repr=False)
    snmp_version: str | None = None
    snmp_port: int | None = None


class ServicePackageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    speed: str
    upload_speed: str | None = None
    data_cap_gb: float | None = None


class ClientRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    status: ClientStatus
    service_package_id: UUID | None = None
    pppoe_username: str | None = None
    ip_address: str | None = None


class DiscoveredDevice(BaseModel):
    ip_address: str
    name: str | None = None
    description: str | None = None
    type: EquipmentType = EquipmentType.router
    brand: str | None = None
    model: str | None = None


class DeviceStatusRead(BaseModel):
    """Dashboard view of a managed device: catalog data plus latest health sample."""

    id: UUID
    name: str
    ip_address: str | None = None
    type: EquipmentType
    brand: str | None = None
    status: DeviceStatus
    last_seen_at: datetime | None = None
    capabilities: list[str] = Field(default_factory=list)
    uptime_seconds: int | None = None
    cpu_usage: float | None = None
    memory_usage: float | None = None
    checked_at: datetime | None = None


class UsageReport(BaseModel):
    client_id: UUID
    period_start: datetime
    bytes_in: int = 0
    bytes_out: int = 0
    total_bytes: int = 0
    usage_gb: float = 0.0
    data_cap_gb: float | None = None
    percentage_used: float | None = None


class ClientActionResponse(BaseModel):
    client_id: UUID
    action: str
    success: bool


class SpeedLimitRequest(BaseModel):
    package_id: UUID
