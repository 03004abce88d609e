"""Primitive contract shared by every device transport.

Transports are synchronous (the RouterOS API library and the SNMP tools
both block); ``DeviceCommandClient`` runs them off the event loop with a
bounded timeout and converts their exceptions into ``CommandResult``
values.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar
from uuid import UUID

from netorch.schemas.network import DeviceRead, DiscoveredDevice

T = TypeVar("T")


class CommandErrorKind(enum.Enum):
    unreachable = "unreachable"
    rejected = "rejected"
    timeout = "timeout"
    unsupported = "unsupported"
    misconfigured = "misconfigured"


class DeviceCommandError(Exception):
    kind = CommandErrorKind.rejected


class DeviceUnreachableError(DeviceCommandError):
    kind = CommandErrorKind.unreachable


class CommandRejectedError(DeviceCommandError):
    kind = CommandErrorKind.rejected


class UnsupportedCommandError(DeviceCommandError):
    kind = CommandErrorKind.unsupported


class DeviceConfigurationError(DeviceCommandError):
    """Device record is missing something the transport needs (address, credentials)."""

    kind = CommandErrorKind.misconfigured


@dataclass
class CommandResult(Generic[T]):
    ok: bool
    command: str
    device_id: UUID
    value: Optional[T] = None
    error_kind: Optional[CommandErrorKind] = None
    detail: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class SessionInfo:
    id: str
    name: str
    address: str | None = None
    caller_id: str | None = None
    uptime: str | None = None


@dataclass(frozen=True)
class SystemResource:
    uptime_seconds: int | None
    cpu_usage: float | None
    memory_usage: float | None


@dataclass(frozen=True)
class InterfaceCounters:
    name: str
    rx_bytes: int
    tx_bytes: int
    status: str = "unknown"


@dataclass(frozen=True)
class QueueCounters:
    """Simple-queue counters; upload is traffic from the target, download towards it."""

    name: str
    target: str
    upload_bps: int = 0
    download_bps: int = 0
    bytes_up: int = 0
    bytes_down: int = 0


@dataclass
class RateLimitSpec:
    policy_name: str
    target: str
    max_down_mbps: int
    max_up_mbps: int
    disabled: bool = False


class DeviceTransport(ABC):
    """One way of speaking to a device. Methods raise ``DeviceCommandError``."""

    name = "transport"

    @abstractmethod
    def create_or_update_rate_limit(self, device: DeviceRead, spec: RateLimitSpec) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_rate_limit_enabled(self, device: DeviceRead, policy_name: str, enabled: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_rate_limit(self, device: DeviceRead, policy_name: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_secret_enabled(self, device: DeviceRead, secret_name: str, enabled: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_active_sessions(self, device: DeviceRead) -> list[SessionInfo]:
        raise NotImplementedError

    @abstractmethod
    def terminate_session(self, device: DeviceRead, session_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def read_system_resource(self, device: DeviceRead) -> SystemResource:
        raise NotImplementedError

    @abstractmethod
    def read_interface_counters(self, device: DeviceRead) -> list[InterfaceCounters]:
        raise NotImplementedError

    @abstractmethod
    def read_queue_counters(self, device: DeviceRead) -> list[QueueCounters]:
        raise NotImplementedError


class DiscoveryScanner(ABC):
    """Identifies whatever answers at an address; ``None`` means nothing did."""

    @abstractmethod
    def scan(self, address: str) -> DiscoveredDevice | None:
        raise NotImplementedError
