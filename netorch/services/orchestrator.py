"""Network Orchestration Facade.

Entry point for billing and client-status workflows. Operations on the same
client are serialized with a per-client lock; different clients and the
periodic monitors run concurrently.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import weakref
from dataclasses import dataclass, field
from uuid import UUID

from netorch.config import Settings
from netorch.schemas.network import ClientRead, DeviceRead, DeviceStatusRead
from netorch.schemas.network_events import (
    ClientDisconnectPayload,
    ClientReconnectPayload,
    NetworkEventRead,
    NetworkEventType,
    StepOutcome,
)
from netorch.services.common import coerce_uuid
from netorch.services.device_commands import (
    CapabilityTransportResolver,
    DeviceCommandClient,
    DiscoveryScanner,
    StaticTransportResolver,
)
from netorch.services.device_commands.routeros import RouterOsTransport
from netorch.services.device_commands.simulated import SimulatedTransport
from netorch.services.device_commands.snmp import SnmpDiscoveryScanner, SnmpTransport
from netorch.services.device_registry import Capability, DeviceRegistry, capabilities_of
from netorch.services.health_monitor import HealthMonitor
from netorch.services.network_events import NetworkEventRecorder
from netorch.services.notifications import (
    LoggingNotificationRequester,
    RedisNotificationPublisher,
)
from netorch.services.qos import QosPolicyManager, build_policy, policy_name_for, queue_target
from netorch.services.scheduler import CancellationToken, PeriodicTask, RetryPolicy
from netorch.services.store import NetworkStore
from netorch.services.usage_monitor import UsageMonitor

logger = logging.getLogger(__name__)


@dataclass
class MonitoringSchedule:
    health_interval_sec: float = 30.0
    discovery_interval_sec: float = 3600.0
    usage_interval_sec: float = 300.0
    compliance_interval_sec: float = 60.0
    discovery_ranges: list[str] = field(default_factory=list)
    retry: RetryPolicy = field(default_factory=RetryPolicy)


def _skipped(step: str, reason: str) -> StepOutcome:
    return StepOutcome(step=step, ok=True, skipped=True, detail=reason)


def _outcome(step: str, result) -> StepOutcome:
    return StepOutcome(step=step, ok=result.ok, detail=result.detail)


class NetworkOrchestrator:
    def __init__(
        self,
        store,
        commands,
        events,
        qos: QosPolicyManager,
        usage: UsageMonitor,
        health: HealthMonitor,
        schedule: MonitoringSchedule | None = None,
    ):
        self.store = store
        self.commands = commands
        self.events = events
        self.qos = qos
        self.usage = usage
        self.health = health
        self.schedule = schedule or MonitoringSchedule()
        self._client_locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._tasks: list[PeriodicTask] = []
        self._token: CancellationToken | None = None
        # Suspension disconnects started by the usage monitor
        self._pending: set[asyncio.Task] = set()

    def _lock_for(self, client_id: UUID) -> asyncio.Lock:
        lock = self._client_locks.get(client_id)
        if lock is None:
            lock = asyncio.Lock()
            self._client_locks[client_id] = lock
        return lock

    def _load_subject(self, client_id: UUID) -> tuple[ClientRead, list[DeviceRead]] | None:
        client = self.store.get_client(client_id)
        if not client:
            logger.warning("Client %s not found", client_id)
            return None
        devices = self.store.list_client_devices(client_id)
        if not devices:
            logger.warning("Client %s has no assigned devices", client_id)
            return None
        return client, devices

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------

    async def disconnect_client(self, client_id, triggered_by: str = "billing") -> bool:
        """Remove QoS, then per device: terminate sessions, disable secret, disable queue.

        Steps already applied are never rolled back; the result is the AND
        of every attempted step.
        """
        client_id = coerce_uuid(client_id)
        async with self._lock_for(client_id):
            subject = self._load_subject(client_id)
            if subject is None:
                return False
            client, devices = subject
            removed = await self.qos.remove_policy(client_id, triggered_by=triggered_by)
            results = await asyncio.gather(
                *(self._disconnect_device(client, device, triggered_by) for device in devices)
            )
            ok = removed and all(results)
            logger.info("Disconnect of client %s across %d devices: ok=%s", client_id, len(devices), ok)
            return ok

    async def _terminate_sessions(self, client: ClientRead, device: DeviceRead) -> StepOutcome:
        listed = await self.commands.list_active_sessions(device)
        if not listed.ok:
            return _outcome("terminate_session", listed)
        sessions = [s for s in listed.value or [] if s.name == client.pppoe_username]
        failures = []
        for session in sessions:
            result = await self.commands.terminate_session(device, session.id)
            if not result.ok:
                failures.append(result.detail or session.id)
        if failures:
            return StepOutcome(step="terminate_session", ok=False, detail="; ".join(failures))
        return StepOutcome(step="terminate_session", ok=True, detail=f"{len(sessions)} terminated")

    async def _disconnect_device(self, client: ClientRead, device: DeviceRead, triggered_by: str) -> bool:
        caps = capabilities_of(device)
        steps: list[StepOutcome] = []
        if Capability.routing not in caps:
            steps.append(_skipped("terminate_session", "no routing capability"))
            steps.append(_skipped("disable_secret", "no routing capability"))
        elif not client.pppoe_username:
            steps.append(_skipped("terminate_session", "client has no PPPoE username"))
            steps.append(_skipped("disable_secret", "client has no PPPoE username"))
        else:
            steps.append(await self._terminate_sessions(client, device))
            result = await self.commands.set_secret_enabled(device, client.pppoe_username, False)
            steps.append(_outcome("disable_secret", result))

        if Capability.qos in caps:
            result = await self.commands.set_rate_limit_enabled(device, policy_name_for(client.id), False)
            steps.append(_outcome("disable_queue", result))
        else:
            steps.append(_skipped("disable_queue", "no qos capability"))

        return self._record_steps(
            ClientDisconnectPayload(device_ip=device.ip_address, steps=steps),
            steps,
            client,
            device,
            triggered_by,
        )

    def _record_steps(self, payload, steps, client, device, triggered_by) -> bool:
        if all(step.skipped for step in steps):
            return True
        success = all(step.ok for step in steps)
        self.events.record(
            payload,
            success=success,
            triggered_by=triggered_by,
            client_id=client.id,
            equipment_id=device.id,
        )
        return success

    async def suspend_client(self, client_id, triggered_by: str = "usage_monitor") -> bool:
        """Disconnect a suspended client.

        The disconnect runs as a task owned by the orchestrator, so cancelling
        the caller (a stopping usage poll) does not abandon it half way.
        ``close()`` waits for these tasks.
        """
        task = asyncio.create_task(self.disconnect_client(client_id, triggered_by=triggered_by))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------

    async def reconnect_client(self, client_id, triggered_by: str = "billing") -> bool:
        """Per device: enable secret, then recreate the queue; then reapply QoS."""
        client_id = coerce_uuid(client_id)
        async with self._lock_for(client_id):
            subject = self._load_subject(client_id)
            if subject is None:
                return False
            client, devices = subject
            if not client.service_package_id:
                logger.warning("Client %s has no service package", client_id)
                return False
            package = self.store.get_service_package(client.service_package_id)
            policy = build_policy(package, self.qos.upload_ratio) if package else None
            if policy is None:
                logger.warning("Client %s package %s is missing or invalid", client_id, client.service_package_id)
                return False

            results = await asyncio.gather(
                *(
                    self._reconnect_device(client, package.id, policy, device, triggered_by)
                    for device in devices
                )
            )
            applied = await self.qos.apply_policy(client_id, package.id, triggered_by=triggered_by)
            ok = all(results) and applied
            logger.info("Reconnect of client %s across %d devices: ok=%s", client_id, len(devices), ok)
            return ok

    async def _reconnect_device(self, client, package_id, policy, device, triggered_by) -> bool:
        caps = capabilities_of(device)
        steps: list[StepOutcome] = []
        if Capability.routing not in caps:
            steps.append(_skipped("enable_secret", "no routing capability"))
        elif not client.pppoe_username:
            steps.append(_skipped("enable_secret", "client has no PPPoE username"))
        else:
            result = await self.commands.set_secret_enabled(device, client.pppoe_username, True)
            steps.append(_outcome("enable_secret", result))

        target = queue_target(client)
        if Capability.qos not in caps:
            steps.append(_skipped("create_queue", "no qos capability"))
        elif not target:
            steps.append(StepOutcome(step="create_queue", ok=False, detail="client has no queue target"))
        else:
            result = await self.commands.create_or_update_rate_limit(
                device,
                policy_name_for(client.id),
                target,
                policy.max_down_mbps,
                policy.max_up_mbps,
            )
            steps.append(_outcome("create_queue", result))

        return self._record_steps(
            ClientReconnectPayload(package_id=package_id, device_ip=device.ip_address, steps=steps),
            steps,
            client,
            device,
            triggered_by,
        )

    # ------------------------------------------------------------------
    # Speed limit
    # ------------------------------------------------------------------

    async def apply_speed_limit(self, client_id, package_id, triggered_by: str = "billing") -> bool:
        client_id = coerce_uuid(client_id)
        package_id = coerce_uuid(package_id)
        async with self._lock_for(client_id):
            if self._load_subject(client_id) is None:
                return False
            if not self.store.get_service_package(package_id):
                logger.warning("Package %s not found", package_id)
                return False
            return await self.qos.update_policy(client_id, package_id, triggered_by=triggered_by)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_device_status(self) -> list[DeviceStatusRead]:
        return self.health.device_status()

    def list_events(
        self,
        client_id=None,
        equipment_id=None,
        event_type: NetworkEventType | None = None,
        limit: int = 100,
    ) -> list[NetworkEventRead]:
        return self.store.list_events(
            client_id=client_id,
            equipment_id=equipment_id,
            event_type=event_type,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Monitoring lifecycle
    # ------------------------------------------------------------------

    @property
    def monitoring(self) -> bool:
        return any(task.running for task in self._tasks)

    def _build_tasks(self) -> list[PeriodicTask]:
        schedule = self.schedule
        tasks = [
            PeriodicTask("health_check", self.health.check_health, schedule.health_interval_sec, schedule.retry),
            PeriodicTask("usage_poll", self.usage.poll_once, schedule.usage_interval_sec, schedule.retry),
            PeriodicTask(
                "qos_compliance",
                self.qos.check_compliance,
                schedule.compliance_interval_sec,
                schedule.retry,
                run_immediately=False,
            ),
        ]
        if schedule.discovery_ranges and self.health.scanner is not None:
            tasks.append(
                PeriodicTask(
                    "discovery",
                    functools.partial(self.health.discover, schedule.discovery_ranges),
                    schedule.discovery_interval_sec,
                    schedule.retry,
                )
            )
        return tasks

    async def start_monitoring(self, token: CancellationToken | None = None) -> None:
        if self.monitoring:
            return
        await self.qos.initialize_from_database()
        self._token = token.child() if token is not None else CancellationToken()
        self._tasks = self._build_tasks()
        for task in self._tasks:
            task.start(self._token)
        logger.info("Network monitoring started: %s", ", ".join(task.name for task in self._tasks))

    async def stop_monitoring(self) -> None:
        if self._token is not None:
            self._token.cancel()
        await asyncio.gather(*(task.stop() for task in self._tasks))
        self._tasks = []
        self._token = None
        logger.info("Network monitoring stopped")

    async def close(self) -> None:
        await self.stop_monitoring()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        close = getattr(self.usage.notifier, "close", None)
        if close is not None:
            await close()


def build_orchestrator(
    settings: Settings,
    session_factory=None,
    transport=None,
    notifier=None,
) -> NetworkOrchestrator:
    """Wire the orchestration layer from settings."""
    store = NetworkStore(session_factory)
    scanner: DiscoveryScanner | None = None
    if transport is None and settings.device_transport == "simulated":
        transport = SimulatedTransport()
    if transport is not None:
        resolver = StaticTransportResolver(transport)
        if isinstance(transport, DiscoveryScanner):
            scanner = transport
    else:
        resolver = CapabilityTransportResolver(
            routeros=RouterOsTransport(
                default_port=settings.routeros_api_port,
                use_ssl=settings.routeros_use_ssl,
            ),
            snmp=SnmpTransport(
                community=settings.snmp_community,
                version=settings.snmp_version,
                timeout_sec=settings.snmp_timeout_sec,
                port=settings.snmp_port,
            ),
        )
        scanner = SnmpDiscoveryScanner(
            community=settings.snmp_community,
            version=settings.snmp_version,
            port=settings.snmp_port,
        )

    commands = DeviceCommandClient(resolver, timeout_sec=settings.device_command_timeout_sec)
    events = NetworkEventRecorder(store)
    registry = DeviceRegistry(store)
    qos = QosPolicyManager(
        store,
        commands,
        events,
        upload_ratio=settings.upload_ratio,
        compliance_tolerance=settings.compliance_tolerance,
        consecutive_samples=settings.compliance_consecutive_samples,
    )
    if notifier is None:
        if settings.notifications_enabled:
            notifier = RedisNotificationPublisher(settings.redis_url, settings.notification_stream)
        else:
            notifier = LoggingNotificationRequester()
    usage = UsageMonitor(store, commands, events, notifier, tz=settings.zone())
    health = HealthMonitor(
        store,
        registry,
        commands,
        events,
        scanner=scanner,
        concurrency=settings.monitor_concurrency,
        max_hosts=settings.discovery_max_hosts,
    )
    schedule = MonitoringSchedule(
        health_interval_sec=settings.health_check_interval_sec,
        discovery_interval_sec=settings.discovery_interval_sec,
        usage_interval_sec=settings.usage_poll_interval_sec,
        compliance_interval_sec=settings.qos_compliance_interval_sec,
        discovery_ranges=settings.discovery_networks(),
        retry=RetryPolicy(
            attempts=settings.task_retry_attempts,
            backoff_sec=settings.task_retry_backoff_sec,
        ),
    )
    orchestrator = NetworkOrchestrator(store, commands, events, qos, usage, health, schedule)
    usage.on_suspend = orchestrator.suspend_client
    return orchestrator
