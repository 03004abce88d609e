"""Event kinds for the network event log.

Each kind has its own payload model; ``NetworkEventPayload`` is the closed
union of them, discriminated on ``kind``.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class NetworkEventType(enum.Enum):
    qos_policy_applied = "qos_policy_applied"
    qos_policy_removed = "qos_policy_removed"
    qos_compliance_violation = "qos_compliance_violation"
    client_disconnect = "client_disconnect"
    client_reconnect = "client_reconnect"
    device_status_change = "device_status_change"
    device_discovered = "device_discovered"
    usage_threshold = "usage_threshold"


class StepOutcome(BaseModel):
    step: str
    ok: bool
    skipped: bool = False
    detail: str | None = None


class QosPolicyAppliedPayload(BaseModel):
    kind: Literal["qos_policy_applied"] = "qos_policy_applied"
    package_id: UUID
    policy_name: str
    max_down_mbps: int
    max_up_mbps: int
    priority: str
    detail: str | None = None


class QosPolicyRemovedPayload(BaseModel):
    kind: Literal["qos_policy_removed"] = "qos_policy_removed"
    package_id: UUID
    policy_name: str
    detail: str | None = None


class ComplianceViolationPayload(BaseModel):
    kind: Literal["qos_compliance_violation"] = "qos_compliance_violation"
    policy_name: str
    observed_mbps: float
    max_down_mbps: int
    threshold_mbps: float
    consecutive_samples: int


class ClientDisconnectPayload(BaseModel):
    kind: Literal["client_disconnect"] = "client_disconnect"
    device_ip: str | None = None
    steps: list[StepOutcome] = Field(default_factory=list)


class ClientReconnectPayload(BaseModel):
    kind: Literal["client_reconnect"] = "client_reconnect"
    package_id: UUID
    device_ip: str | None = None
    steps: list[StepOutcome] = Field(default_factory=list)


class DeviceStatusChangePayload(BaseModel):
    kind: Literal["device_status_change"] = "device_status_change"
    previous_status: str
    new_status: str
    device_ip: str | None = None
    detail: str | None = None


class DeviceDiscoveredPayload(BaseModel):
    kind: Literal["device_discovered"] = "device_discovered"
    ip_address: str
    name: str | None = None
    device_type: str
    brand: str | None = None
    description: str | None = None


class UsageThresholdPayload(BaseModel):
    kind: Literal["usage_threshold"] = "usage_threshold"
    threshold_percent: int
    action: str
    usage_gb: float
    data_cap_gb: float
    percentage_used: float


NetworkEventPayload = Annotated[
    Union[
        QosPolicyAppliedPayload,
        QosPolicyRemovedPayload,
        ComplianceViolationPayload,
        ClientDisconnectPayload,
        ClientReconnectPayload,
        DeviceStatusChangePayload,
        DeviceDiscoveredPayload,
        UsageThresholdPayload,
    ],
    Field(discriminator="kind"),
]

payload_adapter: TypeAdapter[NetworkEventPayload] = TypeAdapter(NetworkEventPayload)


class NetworkEventCreate(BaseModel):
    client_id: UUID | None = None
    equipment_id: UUID | None = None
    triggered_by: str
    success: bool
    payload: NetworkEventPayload

    @property
    def event_type(self) -> NetworkEventType:
        return NetworkEventType(self.payload.kind)


class NetworkEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    client_id: UUID | None = None
    equipment_id: UUID | None = None
    event_type: NetworkEventType
    triggered_by: str
    success: bool
    created_at: datetime
    payload: NetworkEventPayload
