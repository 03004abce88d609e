"""RouterOS API transport for MikroTik devices."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager

import routeros_api
from routeros_api.exceptions import (
    RouterOsApiCommunicationError,
    RouterOsApiConnectionError,
)

from netorch.schemas.network import DeviceRead
from netorch.services.device_commands.base import (
    CommandRejectedError,
    DeviceConfigurationError,
    DeviceTransport,
    DeviceUnreachableError,
    InterfaceCounters,
    QueueCounters,
    RateLimitSpec,
    SessionInfo,
    SystemResource,
)

logger = logging.getLogger(__name__)

QUEUE_PATH = "/queue/simple"
SECRET_PATH = "/ppp/secret"
ACTIVE_PATH = "/ppp/active"

_UPTIME_UNITS = {"w": 604800, "d": 86400, "h": 3600, "m": 60, "s": 1}


def parse_uptime(value: str | None) -> int | None:
    """Convert RouterOS uptime strings such as ``1w2d03:04:05`` or ``3h4m5s``."""
    if not value:
        return None
    total = 0
    matched = False
    clock = re.search(r"(\d+):(\d{2}):(\d{2})$", value)
    if clock:
        hours, minutes, seconds = (int(part) for part in clock.groups())
        total += hours * 3600 + minutes * 60 + seconds
        value = value[: clock.start()]
        matched = True
    for amount, unit in re.findall(r"(\d+)([wdhms])", value):
        total += int(amount) * _UPTIME_UNITS[unit]
        matched = True
    return total if matched else None


def _parse_pair(value: str | None) -> tuple[int, int]:
    parts = (value or "0/0").split("/")
    first = int(parts[0]) if parts[0].isdigit() else 0
    second = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else 0
    return first, second


def _to_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _flag(enabled: bool) -> str:
    return "no" if enabled else "yes"


class RouterOsTransport(DeviceTransport):
    """Opens a short-lived API pool per primitive and always disconnects it."""

    name = "routeros"

    def __init__(self, default_port: int = 8728, use_ssl: bool = False):
        self.default_port = default_port
        self.use_ssl = use_ssl

    def _pool(self, device: DeviceRead) -> routeros_api.RouterOsApiPool:
        if not device.ip_address:
            raise DeviceConfigurationError("RouterOS host is required")
        if not device.api_username:
            raise DeviceConfigurationError(f"No API credentials for {device.name}")
        return routeros_api.RouterOsApiPool(
            host=device.ip_address,
            username=device.api_username,
            password=device.api_password or "",
            port=int(device.api_port or self.default_port),
            use_ssl=self.use_ssl,
            plaintext_login=True,
        )

    @contextmanager
    def _api(self, device: DeviceRead):
        pool = self._pool(device)
        try:
            yield pool.get_api()
        except RouterOsApiConnectionError as exc:
            raise DeviceUnreachableError(f"{device.ip_address}: {exc}") from exc
        except RouterOsApiCommunicationError as exc:
            raise CommandRejectedError(f"{device.ip_address}: {exc}") from exc
        except OSError as exc:
            raise DeviceUnreachableError(f"{device.ip_address}: {exc}") from exc
        finally:
            pool.disconnect()

    @staticmethod
    def _find(resource, name: str) -> dict | None:
        rows = resource.get(name=name)
        return rows[0] if rows else None

    def create_or_update_rate_limit(self, device: DeviceRead, spec: RateLimitSpec) -> None:
        params = {
            "target": spec.target,
            "max-limit": f"{spec.max_up_mbps}M/{spec.max_down_mbps}M",
            "disabled": _flag(not spec.disabled),
        }
        with self._api(device) as api:
            queues = api.get_resource(QUEUE_PATH)
            existing = self._find(queues, spec.policy_name)
            if existing:
                queues.set(id=existing["id"], **params)
            else:
                queues.add(name=spec.policy_name, **params)
        logger.info(
            "Queue %s on %s set to %sM/%sM",
            spec.policy_name,
            device.ip_address,
            spec.max_up_mbps,
            spec.max_down_mbps,
        )

    def set_rate_limit_enabled(self, device: DeviceRead, policy_name: str, enabled: bool) -> None:
        with self._api(device) as api:
            queues = api.get_resource(QUEUE_PATH)
            existing = self._find(queues, policy_name)
            if not existing:
                if enabled:
                    raise CommandRejectedError(f"Queue {policy_name} does not exist")
                return
            queues.set(id=existing["id"], disabled=_flag(enabled))

    def remove_rate_limit(self, device: DeviceRead, policy_name: str) -> None:
        with self._api(device) as api:
            queues = api.get_resource(QUEUE_PATH)
            existing = self._find(queues, policy_name)
            if existing:
                queues.remove(id=existing["id"])

    def set_secret_enabled(self, device: DeviceRead, secret_name: str, enabled: bool) -> None:
        with self._api(device) as api:
            secrets = api.get_resource(SECRET_PATH)
            existing = self._find(secrets, secret_name)
            if not existing:
                if enabled:
                    raise CommandRejectedError(f"PPP secret {secret_name} does not exist")
                return
            secrets.set(id=existing["id"], disabled=_flag(enabled))

    def list_active_sessions(self, device: DeviceRead) -> list[SessionInfo]:
        with self._api(device) as api:
            rows = api.get_resource(ACTIVE_PATH).get()
        return [
            SessionInfo(
                id=row.get("id", ""),
                name=row.get("name", ""),
                address=row.get("address"),
                caller_id=row.get("caller-id"),
                uptime=row.get("uptime"),
            )
            for row in rows
        ]

    def terminate_session(self, device: DeviceRead, session_id: str) -> None:
        with self._api(device) as api:
            active = api.get_resource(ACTIVE_PATH)
            if not any(row.get("id") == session_id for row in active.get()):
                return
            active.remove(id=session_id)

    def read_system_resource(self, device: DeviceRead) -> SystemResource:
        with self._api(device) as api:
            rows = api.get_resource("/system/resource").get()
        if not rows:
            raise CommandRejectedError("Empty /system/resource response")
        row = rows[0]
        total = _to_int(row.get("total-memory"))
        free = _to_int(row.get("free-memory"))
        memory = ((total - free) / total) * 100.0 if total > 0 else None
        cpu = row.get("cpu-load")
        return SystemResource(
            uptime_seconds=parse_uptime(row.get("uptime")),
            cpu_usage=float(cpu) if cpu not in (None, "") else None,
            memory_usage=memory,
        )

    def read_interface_counters(self, device: DeviceRead) -> list[InterfaceCounters]:
        with self._api(device) as api:
            rows = api.get_resource("/interface").get()
        counters = []
        for row in rows:
            if row.get("disabled") == "true":
                status = "disabled"
            elif row.get("running") == "true":
                status = "up"
            else:
                status = "down"
            counters.append(
                InterfaceCounters(
                    name=row.get("name", ""),
                    rx_bytes=_to_int(row.get("rx-byte")),
                    tx_bytes=_to_int(row.get("tx-byte")),
                    status=status,
                )
            )
        return counters

    def read_queue_counters(self, device: DeviceRead) -> list[QueueCounters]:
        with self._api(device) as api:
            rows = api.get_resource(QUEUE_PATH).get()
        counters = []
        for row in rows:
            rate_up, rate_down = _parse_pair(row.get("rate"))
            bytes_up, bytes_down = _parse_pair(row.get("bytes"))
            counters.append(
                QueueCounters(
                    name=row.get("name", ""),
                    target=row.get("target", ""),
                    upload_bps=rate_up,
                    download_bps=rate_down,
                    bytes_up=bytes_up,
                    bytes_down=bytes_down,
                )
            )
        return counters
