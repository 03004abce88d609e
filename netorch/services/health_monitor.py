"""Health & Discovery Monitor."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from ipaddress import ip_network
from uuid import UUID

from netorch.metrics import DEVICE_STATUS_CHANGES
from netorch.models.equipment import DeviceStatus
from netorch.schemas.network import DeviceRead, DeviceStatusRead
from netorch.schemas.network_events import (
    DeviceDiscoveredPayload,
    DeviceStatusChangePayload,
)
from netorch.services.common import utcnow
from netorch.services.device_commands.base import CommandErrorKind, SystemResource

logger = logging.getLogger(__name__)

# A device that answers with an error is still reachable
_REACHABLE_KINDS = {CommandErrorKind.rejected, CommandErrorKind.unsupported}


@dataclass(frozen=True)
class HealthSnapshot:
    status: DeviceStatus
    checked_at: datetime
    resource: SystemResource | None = None
    detail: str | None = None


@dataclass(frozen=True)
class StatusChange:
    device_id: UUID
    previous: DeviceStatus
    current: DeviceStatus


def expand_ranges(network_ranges: list[str], max_hosts: int) -> list[str]:
    """Host addresses of the given CIDR ranges, capped at ``max_hosts``."""
    addresses: list[str] = []
    seen: set[str] = set()
    for item in network_ranges:
        network = ip_network(item.strip(), strict=False)
        hosts = [network.network_address] if network.num_addresses == 1 else network.hosts()
        for host in hosts:
            if len(addresses) >= max_hosts:
                logger.warning("Discovery truncated at %d hosts", max_hosts)
                return addresses
            address = str(host)
            if address not in seen:
                seen.add(address)
                addresses.append(address)
    return addresses


class HealthMonitor:
    def __init__(
        self,
        store,
        registry,
        commands,
        events,
        scanner=None,
        concurrency: int = 32,
        max_hosts: int = 1024,
        scan_timeout_sec: float = 5.0,
    ):
        self.store = store
        self.registry = registry
        self.commands = commands
        self.events = events
        self.scanner = scanner
        self.concurrency = max(1, concurrency)
        self.max_hosts = max_hosts
        self.scan_timeout_sec = scan_timeout_sec
        self._snapshots: dict[UUID, HealthSnapshot] = {}

    async def check_health(self, triggered_by: str = "health_monitor") -> list[StatusChange]:
        """Check every managed device; events only on online/offline transitions."""
        devices = self.registry.load()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def check(device: DeviceRead) -> StatusChange | None:
            async with semaphore:
                return await self._check_device(device, triggered_by)

        results = await asyncio.gather(*(check(device) for device in devices), return_exceptions=True)
        changes: list[StatusChange] = []
        for device, result in zip(devices, results):
            if isinstance(result, Exception):
                logger.error("Health check for %s (%s) failed: %s", device.name, device.ip_address, result)
            elif result is not None:
                changes.append(result)
        logger.info("Health check: %d devices, %d status changes", len(devices), len(changes))
        return changes

    async def _check_device(self, device: DeviceRead, triggered_by: str) -> StatusChange | None:
        result = await self.commands.read_system_resource(device)
        now = utcnow()
        reachable = result.ok or result.error_kind in _REACHABLE_KINDS
        status = DeviceStatus.online if reachable else DeviceStatus.offline
        previous = device.status

        self.store.update_device_status(device.id, status, last_seen_at=now if reachable else None)
        self.registry.mark_status(device.id, status, last_seen_at=now if reachable else None)
        self._snapshots[device.id] = HealthSnapshot(
            status=status,
            checked_at=now,
            resource=result.value if result.ok else None,
            detail=result.detail,
        )

        if {previous, status} != {DeviceStatus.online, DeviceStatus.offline}:
            return None
        DEVICE_STATUS_CHANGES.labels(new_status=status.value).inc()
        self.events.record(
            DeviceStatusChangePayload(
                previous_status=previous.value,
                new_status=status.value,
                device_ip=device.ip_address,
                detail=result.detail,
            ),
            success=True,
            triggered_by=triggered_by,
            equipment_id=device.id,
        )
        return StatusChange(device_id=device.id, previous=previous, current=status)

    async def _scan(self, address: str, semaphore: asyncio.Semaphore):
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(self.scanner.scan, address),
                    timeout=self.scan_timeout_sec,
                )
            except asyncio.TimeoutError:
                logger.debug("Discovery scan of %s timed out", address)
            except Exception as exc:
                logger.debug("Discovery scan of %s failed: %s", address, exc)
            return None

    async def discover(
        self, network_ranges: list[str], triggered_by: str = "discovery"
    ) -> list[DeviceRead]:
        """Scan ranges for uncatalogued devices and register them as pending."""
        if self.scanner is None:
            raise RuntimeError("Discovery requires a scanner")
        addresses = expand_ranges(network_ranges, self.max_hosts)
        known = self.store.known_addresses()
        candidates = [address for address in addresses if address not in known]
        if not candidates:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)
        found = await asyncio.gather(*(self._scan(address, semaphore) for address in candidates))

        created: list[DeviceRead] = []
        for discovered in found:
            if discovered is None:
                continue
            try:
                device = self.store.create_discovered_device(discovered)
                self.events.record(
                    DeviceDiscoveredPayload(
                        ip_address=discovered.ip_address,
                        name=device.name,
                        device_type=discovered.type.value,
                        brand=discovered.brand,
                        description=discovered.description,
                    ),
                    success=True,
                    triggered_by=triggered_by,
                    equipment_id=device.id,
                )
            except Exception:
                logger.exception("Failed to register discovered device %s", discovered.ip_address)
                continue
            created.append(device)
        logger.info(
            "Discovery scanned %d addresses, found %d new devices", len(candidates), len(created)
        )
        return created

    def device_status(self) -> list[DeviceStatusRead]:
        devices = self.registry.devices() or self.registry.load()
        rows = []
        for device in devices:
            snapshot = self._snapshots.get(device.id)
            resource = snapshot.resource if snapshot else None
            rows.append(
                DeviceStatusRead(
                    id=device.id,
                    name=device.name,
                    ip_address=device.ip_address,
                    type=device.type,
                    brand=device.brand,
                    status=device.status,
                    last_seen_at=device.last_seen_at,
                    capabilities=sorted(cap.value for cap in self.registry.capabilities_of(device)),
                    uptime_seconds=resource.uptime_seconds if resource else None,
                    cpu_usage=resource.cpu_usage if resource else None,
                    memory_usage=resource.memory_usage if resource else None,
                    checked_at=snapshot.checked_at if snapshot else None,
                )
            )
        return rows
