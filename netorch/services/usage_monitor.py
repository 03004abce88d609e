"""Usage Monitor: per-client traffic accounting and data-cap enforcement."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from netorch.metrics import USAGE_THRESHOLD_ACTIONS
from netorch.models.client import ClientStatus
from netorch.schemas.network import ClientRead, ServicePackageRead, UsageReport
from netorch.schemas.network_events import NetworkEventType, UsageThresholdPayload
from netorch.services.common import coerce_uuid, utcnow
from netorch.services.qos import policy_name_for

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024**3


@dataclass(frozen=True)
class Threshold:
    percent: int
    action: str


# Descending severity; only the first match fires
THRESHOLDS = (
    Threshold(100, "suspend"),
    Threshold(90, "warning"),
    Threshold(75, "warning"),
)


def highest_threshold(percentage: float) -> Threshold | None:
    for threshold in THRESHOLDS:
        if percentage >= threshold.percent:
            return threshold
    return None


def month_start(now: datetime, tz: ZoneInfo) -> datetime:
    """First instant of ``now``'s calendar month in ``tz``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    return local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def counter_delta(previous: int | None, current: int) -> int:
    """Bytes since the previous reading; a counter that went backwards was reset."""
    if previous is None:
        return 0
    if current < previous:
        return current
    return current - previous


@dataclass(frozen=True)
class ThresholdAction:
    client_id: UUID
    threshold: Threshold
    percentage_used: float
    success: bool


class UsageMonitor:
    def __init__(
        self,
        store,
        commands,
        events,
        notifier,
        on_suspend: Optional[Callable[[UUID], Awaitable[bool]]] = None,
        tz: ZoneInfo | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.commands = commands
        self.events = events
        self.notifier = notifier
        self.on_suspend = on_suspend
        self.tz = tz or ZoneInfo("UTC")
        self.clock = clock
        # (client_id, device_id) -> (bytes_up, bytes_down) at the last poll
        self._baselines: dict[tuple[UUID, UUID], tuple[int, int]] = {}

    def period_start(self) -> datetime:
        return month_start(self.clock(), self.tz)

    async def poll_once(self) -> list[ThresholdAction]:
        """Sample counters for every capped client, then enforce thresholds."""
        clients = self.store.list_capped_clients()
        if not clients:
            return []

        assignments = {client.id: self.store.list_client_devices(client.id) for client, _ in clients}
        devices = {device.id: device for devices in assignments.values() for device in devices}
        device_list = list(devices.values())
        results = await asyncio.gather(
            *(self.commands.read_queue_counters(device) for device in device_list)
        )
        counters: dict[tuple[UUID, str], tuple[int, int]] = {}
        for device, result in zip(device_list, results):
            if not result.ok:
                continue
            for queue in result.value or []:
                counters[(device.id, queue.name)] = (queue.bytes_up, queue.bytes_down)

        now = self.clock()
        actions: list[ThresholdAction] = []
        for client, package in clients:
            self._record_samples(client, assignments[client.id], counters, now)
            action = await self.evaluate(client, package)
            if action:
                actions.append(action)
        return actions

    def _record_samples(self, client: ClientRead, devices, counters, now: datetime) -> None:
        """Write one sample per client per poll.

        The client's queue exists on every QoS device it is assigned to and
        each copy counts the same traffic, so only the busiest device's
        delta is recorded.
        """
        name = policy_name_for(client.id)
        best: tuple[int, int, UUID] | None = None
        for device in devices:
            reading = counters.get((device.id, name))
            if reading is None:
                continue
            key = (client.id, device.id)
            previous = self._baselines.get(key)
            self._baselines[key] = reading
            bytes_out = counter_delta(previous[0] if previous else None, reading[0])
            bytes_in = counter_delta(previous[1] if previous else None, reading[1])
            if best is None or bytes_in + bytes_out > best[0] + best[1]:
                best = (bytes_in, bytes_out, device.id)
        if best is None or not (best[0] or best[1]):
            return
        bytes_in, bytes_out, device_id = best
        self.store.add_usage_sample(
            client.id,
            bytes_in=bytes_in,
            bytes_out=bytes_out,
            sampled_at=now,
            equipment_id=device_id,
        )

    def _already_fired(self, client_id: UUID, since: datetime) -> int:
        fired = self.store.list_events(
            client_id=client_id,
            event_type=NetworkEventType.usage_threshold,
            since=since,
        )
        return max((event.payload.threshold_percent for event in fired), default=0)

    async def evaluate(
        self, client: ClientRead, package: ServicePackageRead
    ) -> ThresholdAction | None:
        """Fire the highest applicable threshold, once per level per month."""
        if not package.data_cap_gb or package.data_cap_gb <= 0:
            return None
        since = self.period_start()
        bytes_in, bytes_out = self.store.usage_since(client.id, since)
        usage_gb = (bytes_in + bytes_out) / BYTES_PER_GB
        percentage = (usage_gb / package.data_cap_gb) * 100.0
        threshold = highest_threshold(percentage)
        if threshold is None:
            return None
        if self._already_fired(client.id, since) >= threshold.percent:
            return None

        data = {
            "threshold_percent": threshold.percent,
            "usage_gb": round(usage_gb, 3),
            "data_cap_gb": package.data_cap_gb,
            "percentage_used": round(percentage, 2),
        }
        success = False
        try:
            if threshold.action == "suspend":
                success = await self._suspend(client)
                await self._notify(client.id, "data_cap_exceeded", data)
            else:
                success = await self._notify(client.id, "usage_warning", data)
        finally:
            # Recorded even when the cycle is cancelled mid-suspension
            self.events.record(
                UsageThresholdPayload(
                    threshold_percent=threshold.percent,
                    action=threshold.action,
                    usage_gb=data["usage_gb"],
                    data_cap_gb=package.data_cap_gb,
                    percentage_used=data["percentage_used"],
                ),
                success=success,
                triggered_by="usage_monitor",
                client_id=client.id,
            )
            USAGE_THRESHOLD_ACTIONS.labels(action=threshold.action).inc()
        logger.info(
            "Client %s at %.1f%% of %sGB cap: %s (%s%%)",
            client.id,
            percentage,
            package.data_cap_gb,
            threshold.action,
            threshold.percent,
        )
        return ThresholdAction(
            client_id=client.id,
            threshold=threshold,
            percentage_used=percentage,
            success=success,
        )

    async def _suspend(self, client: ClientRead) -> bool:
        self.store.set_client_status(client.id, ClientStatus.suspended)
        if self.on_suspend is None:
            return True
        return await self.on_suspend(client.id)

    async def _notify(self, client_id: UUID, kind: str, data: dict) -> bool:
        try:
            await self.notifier.request(client_id, kind, data)
        except Exception as exc:
            logger.error("Notification request %s for client %s failed: %s", kind, client_id, exc)
            return False
        return True

    def usage_report(self, client_id) -> UsageReport | None:
        client = self.store.get_client(coerce_uuid(client_id))
        if not client:
            return None
        package = (
            self.store.get_service_package(client.service_package_id)
            if client.service_package_id
            else None
        )
        since = self.period_start()
        bytes_in, bytes_out = self.store.usage_since(client.id, since)
        return self._report(client.id, since, bytes_in, bytes_out, package)

    def top_consumers(self, limit: int = 10) -> list[UsageReport]:
        if limit <= 0:
            raise ValueError("limit must be positive")
        since = self.period_start()
        reports = []
        for client_id, bytes_in, bytes_out in self.store.top_usage_since(since, limit=limit):
            client = self.store.get_client(client_id)
            package = (
                self.store.get_service_package(client.service_package_id)
                if client and client.service_package_id
                else None
            )
            reports.append(self._report(client_id, since, bytes_in, bytes_out, package))
        return reports

    @staticmethod
    def _report(client_id, since, bytes_in, bytes_out, package) -> UsageReport:
        total = bytes_in + bytes_out
        usage_gb = total / BYTES_PER_GB
        cap = package.data_cap_gb if package else None
        return UsageReport(
            client_id=client_id,
            period_start=since,
            bytes_in=bytes_in,
            bytes_out=bytes_out,
            total_bytes=total,
            usage_gb=round(usage_gb, 3),
            data_cap_gb=cap,
            percentage_used=round(usage_gb / cap * 100.0, 2) if cap else None,
        )
