"""In-memory device transport for development and tests.

Keeps per-address device state and records every primitive call in order,
so callers can inspect exactly what was attempted against which device.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from netorch.schemas.network import DeviceRead, DiscoveredDevice
from netorch.services.device_commands.base import (
    CommandRejectedError,
    DeviceTransport,
    DeviceUnreachableError,
    DiscoveryScanner,
    InterfaceCounters,
    QueueCounters,
    RateLimitSpec,
    SessionInfo,
    SystemResource,
)
from netorch.services.device_commands.snmp import classify_device


@dataclass
class SimulatedQueue:
    name: str
    target: str
    max_down_mbps: int
    max_up_mbps: int
    disabled: bool = False
    bytes_up: int = 0
    bytes_down: int = 0
    upload_bps: int = 0
    download_bps: int = 0


@dataclass
class SimulatedDevice:
    address: str
    reachable: bool = True
    queues: dict[str, SimulatedQueue] = field(default_factory=dict)
    # secret name -> enabled
    secrets: dict[str, bool] = field(default_factory=dict)
    sessions: list[SessionInfo] = field(default_factory=list)
    interfaces: list[InterfaceCounters] = field(default_factory=list)
    resource: SystemResource = field(
        default_factory=lambda: SystemResource(uptime_seconds=3600, cpu_usage=5.0, memory_usage=30.0)
    )
    rejected: set[str] = field(default_factory=set)
    sys_descr: str | None = None
    sys_name: str | None = None


@dataclass(frozen=True)
class RecordedCall:
    address: str
    command: str
    args: tuple = ()


class SimulatedTransport(DeviceTransport, DiscoveryScanner):
    name = "simulated"

    def __init__(self, delay_sec: float = 0.0, auto_create: bool = True):
        self.delay_sec = delay_sec
        # Unknown addresses answer as empty, reachable devices unless disabled
        self.auto_create = auto_create
        self.devices: dict[str, SimulatedDevice] = {}
        self.calls: list[RecordedCall] = []
        self._lock = threading.Lock()

    def add_device(self, address: str, **kwargs) -> SimulatedDevice:
        device = SimulatedDevice(address=address, **kwargs)
        with self._lock:
            self.devices[address] = device
        return device

    def state(self, address: str) -> SimulatedDevice:
        with self._lock:
            device = self.devices.get(address)
            if device is None:
                if not self.auto_create:
                    raise KeyError(address)
                device = SimulatedDevice(address=address)
                self.devices[address] = device
            return device

    def set_reachable(self, address: str, reachable: bool) -> None:
        self.state(address).reachable = reachable

    def reject(self, address: str, command: str) -> None:
        self.state(address).rejected.add(command)

    def calls_for(self, address: str) -> list[RecordedCall]:
        with self._lock:
            return [call for call in self.calls if call.address == address]

    def _enter(self, address: str | None, command: str, *args) -> SimulatedDevice:
        address = address or ""
        with self._lock:
            self.calls.append(RecordedCall(address=address, command=command, args=args))
        if self.delay_sec:
            time.sleep(self.delay_sec)
        with self._lock:
            device = self.devices.get(address)
            if device is None and self.auto_create:
                device = self.devices[address] = SimulatedDevice(address=address)
        if device is None or not device.reachable:
            raise DeviceUnreachableError(f"{address} is not responding")
        if command in device.rejected:
            raise CommandRejectedError(f"{address} rejected {command}")
        return device

    def create_or_update_rate_limit(self, device: DeviceRead, spec: RateLimitSpec) -> None:
        state = self._enter(
            device.ip_address,
            "create_or_update_rate_limit",
            spec.policy_name,
            spec.target,
            spec.max_down_mbps,
            spec.max_up_mbps,
            spec.disabled,
        )
        with self._lock:
            queue = state.queues.get(spec.policy_name)
            if queue:
                queue.target = spec.target
                queue.max_down_mbps = spec.max_down_mbps
                queue.max_up_mbps = spec.max_up_mbps
                queue.disabled = spec.disabled
            else:
                state.queues[spec.policy_name] = SimulatedQueue(
                    name=spec.policy_name,
                    target=spec.target,
                    max_down_mbps=spec.max_down_mbps,
                    max_up_mbps=spec.max_up_mbps,
                    disabled=spec.disabled,
                )

    def set_rate_limit_enabled(self, device: DeviceRead, policy_name: str, enabled: bool) -> None:
        command = "enable_rate_limit" if enabled else "disable_rate_limit"
        state = self._enter(device.ip_address, command, policy_name)
        with self._lock:
            queue = state.queues.get(policy_name)
            if queue is None:
                if enabled:
                    raise CommandRejectedError(f"Queue {policy_name} does not exist")
                return
            queue.disabled = not enabled

    def remove_rate_limit(self, device: DeviceRead, policy_name: str) -> None:
        state = self._enter(device.ip_address, "remove_rate_limit", policy_name)
        with self._lock:
            state.queues.pop(policy_name, None)

    def set_secret_enabled(self, device: DeviceRead, secret_name: str, enabled: bool) -> None:
        command = "enable_secret" if enabled else "disable_secret"
        state = self._enter(device.ip_address, command, secret_name)
        with self._lock:
            if secret_name not in state.secrets:
                if enabled:
                    raise CommandRejectedError(f"PPP secret {secret_name} does not exist")
                return
            state.secrets[secret_name] = enabled

    def list_active_sessions(self, device: DeviceRead) -> list[SessionInfo]:
        state = self._enter(device.ip_address, "list_active_sessions")
        with self._lock:
            return list(state.sessions)

    def terminate_session(self, device: DeviceRead, session_id: str) -> None:
        state = self._enter(device.ip_address, "terminate_session", session_id)
        with self._lock:
            state.sessions = [session for session in state.sessions if session.id != session_id]

    def read_system_resource(self, device: DeviceRead) -> SystemResource:
        return self._enter(device.ip_address, "read_system_resource").resource

    def read_interface_counters(self, device: DeviceRead) -> list[InterfaceCounters]:
        state = self._enter(device.ip_address, "read_interface_counters")
        return list(state.interfaces)

    def read_queue_counters(self, device: DeviceRead) -> list[QueueCounters]:
        state = self._enter(device.ip_address, "read_queue_counters")
        with self._lock:
            return [
                QueueCounters(
                    name=queue.name,
                    target=queue.target,
                    upload_bps=queue.upload_bps,
                    download_bps=queue.download_bps,
                    bytes_up=queue.bytes_up,
                    bytes_down=queue.bytes_down,
                )
                for queue in state.queues.values()
            ]

    def scan(self, address: str) -> DiscoveredDevice | None:
        with self._lock:
            self.calls.append(RecordedCall(address=address, command="scan"))
            device = self.devices.get(address)
        if device is None or not device.reachable or device.sys_descr is None:
            return None
        device_type, brand = classify_device(device.sys_descr)
        return DiscoveredDevice(
            ip_address=address,
            name=device.sys_name,
            description=device.sys_descr,
            type=device_type,
            brand=brand,
        )
