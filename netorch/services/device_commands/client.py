"""Device Command Client: retry-safe configuration primitives for one device."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, TypeVar

from netorch.metrics import observe_command
from netorch.schemas.network import DeviceRead
from netorch.services.device_commands.base import (
    CommandErrorKind,
    CommandResult,
    DeviceCommandError,
    DeviceTransport,
    InterfaceCounters,
    QueueCounters,
    RateLimitSpec,
    SessionInfo,
    SystemResource,
)
from netorch.services.device_registry import Capability, capabilities_of

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StaticTransportResolver:
    """Every device speaks through the same transport."""

    def __init__(self, transport: DeviceTransport):
        self.transport = transport

    def transport_for(self, device: DeviceRead) -> DeviceTransport:
        return self.transport


class CapabilityTransportResolver:
    """RouterOS devices use the API transport, everything else falls back to SNMP."""

    def __init__(self, routeros: DeviceTransport, snmp: DeviceTransport):
        self.routeros = routeros
        self.snmp = snmp

    def transport_for(self, device: DeviceRead) -> DeviceTransport:
        if Capability.routeros in capabilities_of(device):
            return self.routeros
        return self.snmp


def _require_text(name: str, value: str | None) -> str:
    if not value or not str(value).strip():
        raise ValueError(f"{name} is required")
    return str(value).strip()


class DeviceCommandClient:
    """Runs transport primitives off the event loop with a bounded timeout.

    Expected device failures (unreachable, rejected, timed out, unsupported,
    misconfigured device record) come back as a failed ``CommandResult``;
    invalid arguments raise ``ValueError`` at the call site.
    """

    def __init__(self, resolver, timeout_sec: float = 10.0):
        if timeout_sec <= 0:
            raise ValueError("timeout_sec must be positive")
        self.resolver = resolver
        self.timeout_sec = timeout_sec

    async def _execute(
        self,
        command: str,
        device: DeviceRead,
        call: Callable[[DeviceTransport], T],
        required: Capability | None = None,
    ) -> CommandResult[T]:
        if required is not None and required not in capabilities_of(device):
            observe_command(command, CommandErrorKind.unsupported.value, 0.0)
            return CommandResult(
                ok=False,
                command=command,
                device_id=device.id,
                error_kind=CommandErrorKind.unsupported,
                detail=f"device lacks {required.value} capability",
            )
        if not device.ip_address:
            observe_command(command, CommandErrorKind.misconfigured.value, 0.0)
            return CommandResult(
                ok=False,
                command=command,
                device_id=device.id,
                error_kind=CommandErrorKind.misconfigured,
                detail="device has no address",
            )

        transport = self.resolver.transport_for(device)
        start = time.monotonic()
        try:
            value = await asyncio.wait_for(
                asyncio.to_thread(call, transport), timeout=self.timeout_sec
            )
        except asyncio.TimeoutError:
            result = CommandResult(
                ok=False,
                command=command,
                device_id=device.id,
                error_kind=CommandErrorKind.timeout,
                detail=f"no response within {self.timeout_sec:g}s",
            )
        except DeviceCommandError as exc:
            result = CommandResult(
                ok=False,
                command=command,
                device_id=device.id,
                error_kind=exc.kind,
                detail=str(exc) or exc.kind.value,
            )
        except OSError as exc:
            result = CommandResult(
                ok=False,
                command=command,
                device_id=device.id,
                error_kind=CommandErrorKind.unreachable,
                detail=str(exc),
            )
        else:
            result = CommandResult(ok=True, command=command, device_id=device.id, value=value)

        duration = time.monotonic() - start
        outcome = "ok" if result.ok else result.error_kind.value
        observe_command(command, outcome, duration)
        if result.ok:
            logger.debug("%s on %s (%s) ok in %.3fs", command, device.name, device.ip_address, duration)
        else:
            logger.warning(
                "%s on %s (%s) failed: %s (%s)",
                command,
                device.name,
                device.ip_address,
                result.error_kind.value,
                result.detail,
            )
        return result

    async def create_or_update_rate_limit(
        self,
        device: DeviceRead,
        policy_name: str,
        target: str,
        max_down: int,
        max_up: int,
        disabled: bool = False,
    ) -> CommandResult[None]:
        spec = RateLimitSpec(
            policy_name=_require_text("policy_name", policy_name),
            target=_require_text("target", target),
            max_down_mbps=int(max_down),
            max_up_mbps=int(max_up),
            disabled=disabled,
        )
        if spec.max_down_mbps <= 0 or spec.max_up_mbps <= 0:
            raise ValueError("rate limits must be positive")
        return await self._execute(
            "create_or_update_rate_limit",
            device,
            lambda transport: transport.create_or_update_rate_limit(device, spec),
            required=Capability.qos,
        )

    async def set_rate_limit_enabled(
        self, device: DeviceRead, policy_name: str, enabled: bool
    ) -> CommandResult[None]:
        policy_name = _require_text("policy_name", policy_name)
        return await self._execute(
            "enable_rate_limit" if enabled else "disable_rate_limit",
            device,
            lambda transport: transport.set_rate_limit_enabled(device, policy_name, enabled),
            required=Capability.qos,
        )

    async def remove_rate_limit(self, device: DeviceRead, policy_name: str) -> CommandResult[None]:
        policy_name = _require_text("policy_name", policy_name)
        return await self._execute(
            "remove_rate_limit",
            device,
            lambda transport: transport.remove_rate_limit(device, policy_name),
            required=Capability.qos,
        )

    async def set_secret_enabled(
        self, device: DeviceRead, secret_name: str, enabled: bool
    ) -> CommandResult[None]:
        secret_name = _require_text("secret_name", secret_name)
        return await self._execute(
            "enable_secret" if enabled else "disable_secret",
            device,
            lambda transport: transport.set_secret_enabled(device, secret_name, enabled),
            required=Capability.routing,
        )

    async def list_active_sessions(self, device: DeviceRead) -> CommandResult[list[SessionInfo]]:
        return await self._execute(
            "list_active_sessions",
            device,
            lambda transport: transport.list_active_sessions(device),
            required=Capability.routing,
        )

    async def terminate_session(self, device: DeviceRead, session_id: str) -> CommandResult[None]:
        session_id = _require_text("session_id", session_id)
        return await self._execute(
            "terminate_session",
            device,
            lambda transport: transport.terminate_session(device, session_id),
            required=Capability.routing,
        )

    async def read_system_resource(self, device: DeviceRead) -> CommandResult[SystemResource]:
        return await self._execute(
            "read_system_resource",
            device,
            lambda transport: transport.read_system_resource(device),
        )

    async def read_interface_counters(
        self, device: DeviceRead
    ) -> CommandResult[list[InterfaceCounters]]:
        return await self._execute(
            "read_interface_counters",
            device,
            lambda transport: transport.read_interface_counters(device),
        )

    async def read_queue_counters(self, device: DeviceRead) -> CommandResult[list[QueueCounters]]:
        return await self._execute(
            "read_queue_counters",
            device,
            lambda transport: transport.read_queue_counters(device),
        )

