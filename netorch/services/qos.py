"""QoS Policy Manager.

Maps a client and service package to a bandwidth policy, pushes it to the
client's assigned devices, and keeps an in-memory map of what was last
attempted on the wire. The database says which package a client is
entitled to; this map says what is currently configured.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from netorch.schemas.network import ClientRead, DeviceRead, ServicePackageRead
from netorch.schemas.network_events import (
    ComplianceViolationPayload,
    QosPolicyAppliedPayload,
    QosPolicyRemovedPayload,
)
from netorch.services.common import coerce_uuid, utcnow
from netorch.services.device_registry import Capability, capabilities_of

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"^\s*(\d+)")

HIGH_PRIORITY_MBPS = 100
MEDIUM_PRIORITY_MBPS = 50


def parse_speed_mbps(speed: str | None) -> int | None:
    """Leading integer of an advertised speed string ("50 Mbps" -> 50)."""
    if not speed:
        return None
    match = _LEADING_INT.match(speed)
    return int(match.group(1)) if match else None


def resolve_priority(max_down_mbps: int) -> str:
    if max_down_mbps >= HIGH_PRIORITY_MBPS:
        return "high"
    if max_down_mbps >= MEDIUM_PRIORITY_MBPS:
        return "medium"
    return "low"


@dataclass(frozen=True)
class BandwidthPolicy:
    max_down_mbps: int
    max_up_mbps: int
    priority: str


def build_policy(package: ServicePackageRead, upload_ratio: float = 0.8) -> BandwidthPolicy | None:
    max_down = parse_speed_mbps(package.speed)
    if not max_down:
        return None
    max_up = parse_speed_mbps(package.upload_speed)
    if not max_up:
        max_up = max(1, round(max_down * upload_ratio))
    return BandwidthPolicy(
        max_down_mbps=max_down,
        max_up_mbps=max_up,
        priority=resolve_priority(max_down),
    )


def policy_name_for(client_id) -> str:
    return f"client-{coerce_uuid(client_id)}"


def queue_target(client: ClientRead) -> str | None:
    """Queue target: the client's address, else its dynamic PPPoE interface."""
    if client.ip_address:
        return client.ip_address
    if client.pppoe_username:
        return f"<pppoe-{client.pppoe_username}>"
    return None


def qos_devices(devices: list[DeviceRead]) -> list[DeviceRead]:
    return [device for device in devices if Capability.qos in capabilities_of(device)]


@dataclass(frozen=True)
class ActivePolicy:
    client_id: UUID
    package_id: UUID
    policy_name: str
    target: str
    max_down_mbps: int
    max_up_mbps: int
    priority: str
    device_ids: tuple[UUID, ...] = field(default_factory=tuple)
    applied_at: datetime = field(default_factory=utcnow)


class QosPolicyManager:
    def __init__(
        self,
        store,
        commands,
        events,
        upload_ratio: float = 0.8,
        compliance_tolerance: float = 1.1,
        consecutive_samples: int = 2,
    ):
        if not 0 < upload_ratio <= 1:
            raise ValueError("upload_ratio must be in (0, 1]")
        if compliance_tolerance < 1:
            raise ValueError("compliance_tolerance must be >= 1")
        self.store = store
        self.commands = commands
        self.events = events
        self.upload_ratio = upload_ratio
        self.compliance_tolerance = compliance_tolerance
        self.consecutive_samples = max(1, consecutive_samples)
        self._policies: dict[UUID, ActivePolicy] = {}
        self._over_threshold: dict[UUID, int] = {}
        self._lock = asyncio.Lock()

    async def get_policy(self, client_id) -> ActivePolicy | None:
        async with self._lock:
            return self._policies.get(coerce_uuid(client_id))

    async def active_policies(self) -> list[ActivePolicy]:
        async with self._lock:
            return list(self._policies.values())

    async def initialize_from_database(self) -> int:
        """Rebuild the policy map from entitlements without touching devices."""
        rebuilt: dict[UUID, ActivePolicy] = {}
        for client in self.store.list_entitled_clients():
            package = self.store.get_service_package(client.service_package_id)
            if not package:
                continue
            policy = build_policy(package, self.upload_ratio)
            target = queue_target(client)
            devices = qos_devices(self.store.list_client_devices(client.id))
            if not policy or not target or not devices:
                continue
            rebuilt[client.id] = ActivePolicy(
                client_id=client.id,
                package_id=package.id,
                policy_name=policy_name_for(client.id),
                target=target,
                max_down_mbps=policy.max_down_mbps,
                max_up_mbps=policy.max_up_mbps,
                priority=policy.priority,
                device_ids=tuple(device.id for device in devices),
            )
        async with self._lock:
            self._policies = rebuilt
            self._over_threshold.clear()
        logger.info("QoS policy map initialized with %d policies", len(rebuilt))
        return len(rebuilt)

    async def apply_policy(self, client_id, package_id, triggered_by: str = "qos_manager") -> bool:
        client_id = coerce_uuid(client_id)
        package_id = coerce_uuid(package_id)
        client = self.store.get_client(client_id)
        if not client:
            logger.warning("Cannot apply QoS: client %s not found", client_id)
            return False
        package = self.store.get_service_package(package_id)
        if not package:
            logger.warning("Cannot apply QoS to %s: package %s not found", client_id, package_id)
            return False
        policy = build_policy(package, self.upload_ratio)
        if not policy:
            logger.warning("Cannot apply QoS: package %s speed %r is unparseable", package_id, package.speed)
            return False
        target = queue_target(client)
        if not target:
            logger.warning("Cannot apply QoS: client %s has no address or PPPoE username", client_id)
            return False
        devices = qos_devices(self.store.list_client_devices(client_id))
        if not devices:
            logger.warning("Cannot apply QoS: client %s has no QoS-capable devices", client_id)
            return False

        name = policy_name_for(client_id)
        async with self._lock:
            previous = self._policies.get(client_id)
        current_ids = {device.id for device in devices}
        stale_ok = True
        if previous:
            stale_ids = [device_id for device_id in previous.device_ids if device_id not in current_ids]
            if stale_ids:
                stale_ok = await self._remove_from_devices(
                    previous, stale_ids, triggered_by, detail="device no longer assigned"
                )

        results = await asyncio.gather(
            *(
                self.commands.create_or_update_rate_limit(
                    device,
                    name,
                    target,
                    policy.max_down_mbps,
                    policy.max_up_mbps,
                )
                for device in devices
            )
        )
        for device, result in zip(devices, results):
            self.events.record(
                QosPolicyAppliedPayload(
                    package_id=package_id,
                    policy_name=name,
                    max_down_mbps=policy.max_down_mbps,
                    max_up_mbps=policy.max_up_mbps,
                    priority=policy.priority,
                    detail=result.detail,
                ),
                success=result.ok,
                triggered_by=triggered_by,
                client_id=client_id,
                equipment_id=device.id,
            )

        async with self._lock:
            self._policies[client_id] = ActivePolicy(
                client_id=client_id,
                package_id=package_id,
                policy_name=name,
                target=target,
                max_down_mbps=policy.max_down_mbps,
                max_up_mbps=policy.max_up_mbps,
                priority=policy.priority,
                device_ids=tuple(device.id for device in devices),
            )
            self._over_threshold.pop(client_id, None)

        ok = stale_ok and all(result.ok for result in results)
        logger.info(
            "QoS policy %s (%s/%s Mbps, %s) applied to %d devices for client %s: ok=%s",
            name,
            policy.max_down_mbps,
            policy.max_up_mbps,
            policy.priority,
            len(devices),
            client_id,
            ok,
        )
        return ok

    async def _remove_from_devices(
        self,
        policy: ActivePolicy,
        device_ids,
        triggered_by: str,
        detail: str | None = None,
    ) -> bool:
        devices: list[DeviceRead] = []
        for device_id in device_ids:
            device = self.store.get_device(device_id)
            if device is None:
                logger.info("Device %s is gone; nothing to remove for %s", device_id, policy.policy_name)
                continue
            devices.append(device)
        results = await asyncio.gather(
            *(self.commands.remove_rate_limit(device, policy.policy_name) for device in devices)
        )
        for device, result in zip(devices, results):
            self.events.record(
                QosPolicyRemovedPayload(
                    package_id=policy.package_id,
                    policy_name=policy.policy_name,
                    detail=result.detail or detail,
                ),
                success=result.ok,
                triggered_by=triggered_by,
                client_id=policy.client_id,
                equipment_id=device.id,
            )
        return all(result.ok for result in results)

    async def remove_policy(self, client_id, triggered_by: str = "qos_manager") -> bool:
        """Remove the recorded policy; a client with no recorded policy is a no-op success."""
        client_id = coerce_uuid(client_id)
        async with self._lock:
            policy = self._policies.get(client_id)
        if policy is None:
            return True

        ok = await self._remove_from_devices(policy, policy.device_ids, triggered_by)
        async with self._lock:
            if self._policies.get(client_id) is policy:
                del self._policies[client_id]
            self._over_threshold.pop(client_id, None)
        logger.info("QoS policy %s removed for client %s: ok=%s", policy.policy_name, client_id, ok)
        return ok

    async def update_policy(self, client_id, new_package_id, triggered_by: str = "qos_manager") -> bool:
        # Apply proceeds even when removal fails; per-device events expose any drift
        removed = await self.remove_policy(client_id, triggered_by=triggered_by)
        applied = await self.apply_policy(client_id, new_package_id, triggered_by=triggered_by)
        return removed and applied

    async def check_compliance(self, triggered_by: str = "qos_compliance") -> list[UUID]:
        """Flag clients whose download rate stays above ``max_down * tolerance``.

        A violation event is recorded once the rate has been over the band
        for ``consecutive_samples`` checks in a row; dropping back under the
        band resets the count.
        """
        async with self._lock:
            policies = list(self._policies.values())
        if not policies:
            return []

        device_ids = {device_id for policy in policies for device_id in policy.device_ids}
        devices = [device for device in (self.store.get_device(i) for i in device_ids) if device]
        results = await asyncio.gather(*(self.commands.read_queue_counters(device) for device in devices))
        rates: dict[tuple[UUID, str], int] = {}
        for device, result in zip(devices, results):
            if not result.ok:
                continue
            for counters in result.value or []:
                rates[(device.id, counters.name)] = counters.download_bps

        flagged: list[UUID] = []
        for policy in policies:
            samples = [
                rates[(device_id, policy.policy_name)]
                for device_id in policy.device_ids
                if (device_id, policy.policy_name) in rates
            ]
            if not samples:
                continue
            observed_mbps = max(samples) / 1_000_000
            threshold = policy.max_down_mbps * self.compliance_tolerance
            async with self._lock:
                if observed_mbps <= threshold:
                    self._over_threshold.pop(policy.client_id, None)
                    continue
                count = self._over_threshold.get(policy.client_id, 0) + 1
                self._over_threshold[policy.client_id] = count
            if count != self.consecutive_samples:
                continue
            flagged.append(policy.client_id)
            self.events.record(
                ComplianceViolationPayload(
                    policy_name=policy.policy_name,
                    observed_mbps=round(observed_mbps, 3),
                    max_down_mbps=policy.max_down_mbps,
                    threshold_mbps=round(threshold, 3),
                    consecutive_samples=count,
                ),
                success=False,
                triggered_by=triggered_by,
                client_id=policy.client_id,
            )
        return flagged
