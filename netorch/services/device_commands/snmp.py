"""Read-only SNMP transport and discovery scanner built on net-snmp's CLI tools."""

from __future__ import annotations

import logging
import os
import re
import subprocess

from netorch.models.equipment import EquipmentType
from netorch.schemas.network import DeviceRead, DiscoveredDevice
from netorch.services.device_commands.base import (
    CommandRejectedError,
    DeviceConfigurationError,
    DeviceTransport,
    DeviceUnreachableError,
    DiscoveryScanner,
    InterfaceCounters,
    QueueCounters,
    RateLimitSpec,
    SessionInfo,
    SystemResource,
    UnsupportedCommandError,
)

logger = logging.getLogger(__name__)

SYS_DESCR = ".1.3.6.1.2.1.1.1.0"
SYS_UPTIME = ".1.3.6.1.2.1.1.3.0"
SYS_NAME = ".1.3.6.1.2.1.1.5.0"
HR_PROCESSOR_LOAD = ".1.3.6.1.2.1.25.3.3.1.2"
HR_STORAGE_TYPE = ".1.3.6.1.2.1.25.2.3.1.2"
HR_STORAGE_SIZE = ".1.3.6.1.2.1.25.2.3.1.5"
HR_STORAGE_USED = ".1.3.6.1.2.1.25.2.3.1.6"
HR_STORAGE_RAM = ".1.3.6.1.2.1.25.2.1.2"
IF_DESCR = ".1.3.6.1.2.1.2.2.1.2"
IF_OPER_STATUS = ".1.3.6.1.2.1.2.2.1.8"
IF_HC_IN_OCTETS = ".1.3.6.1.2.1.31.1.1.1.6"
IF_HC_OUT_OCTETS = ".1.3.6.1.2.1.31.1.1.1.10"
MIKROTIK_CPU = ".1.3.6.1.4.1.14988.1.1.3.10.0"


def snmp_args(
    host: str,
    community: str,
    version: str = "2c",
    port: int | None = None,
    command: str = "snmpwalk",
    timeout: int = 5,
    bulk: bool = False,
) -> list[str]:
    if not host:
        raise DeviceConfigurationError("Missing address for SNMP request.")
    version = (version or "2c").lower().lstrip("v")
    args = [command, "-t", str(timeout), "-r", "1", "-m", ""]
    if bulk:
        args.append("-Cr25")
    if version == "2c":
        args += ["-v2c", "-c", community or "public"]
    elif version == "1":
        args += ["-v1", "-c", community or "public"]
    else:
        raise DeviceConfigurationError(f"Unsupported SNMP version: {version}")
    if port:
        host = f"{host}:{port}"
    args.append(host)
    return args


def run_snmp_command(args: list[str], timeout: int) -> list[str]:
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise DeviceConfigurationError(f"{args[0]} is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise DeviceUnreachableError(f"{args[-2]} timed out") from exc
    if os.getenv("SNMP_DEBUG") == "1":
        logger.info(
            "SNMP debug: cmd=%s rc=%s stdout=%s stderr=%s",
            " ".join(args),
            result.returncode,
            result.stdout.splitlines()[:10],
            result.stderr.splitlines()[:10],
        )
    if result.returncode != 0:
        stderr = result.stderr.strip()
        if "timeout" in stderr.lower() or "no response" in stderr.lower():
            raise DeviceUnreachableError(stderr or "SNMP timeout")
        raise CommandRejectedError(stderr or "SNMP request failed.")
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def parse_walk(lines: list[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for line in lines:
        if " = " not in line:
            continue
        oid_part, value_part = line.split(" = ", 1)
        index = oid_part.split(".")[-1]
        value = value_part.split(": ", 1)[-1].strip().strip('"')
        if value.lower().startswith("no such"):
            continue
        parsed[index] = value
    return parsed


def parse_int(value: str | None) -> int | None:
    if not value:
        return None
    match = re.search(r"(\d+)", value)
    return int(match.group(1)) if match else None


def parse_scalar(lines: list[str]) -> str | None:
    parsed = parse_walk(lines)
    if not parsed:
        return None
    return next(iter(parsed.values()))


def parse_oper_status(value: str | None) -> str:
    if not value:
        return "unknown"
    lowered = value.lower()
    code = parse_int(lowered)
    if code == 1 or lowered.startswith("up"):
        return "up"
    if code == 2 or lowered.startswith("down"):
        return "down"
    return "unknown"


def classify_device(sys_descr: str | None) -> tuple[EquipmentType, str | None]:
    """Guess family and brand from an SNMP sysDescr string."""
    text = (sys_descr or "").lower()
    if "mikrotik" in text or "routeros" in text:
        if "crs" in text or "switch" in text:
            return EquipmentType.switch, "MikroTik"
        return EquipmentType.router, "MikroTik"
    brand = None
    for candidate in ("Ubiquiti", "Cisco", "Huawei", "Juniper", "Cambium"):
        if candidate.lower() in text:
            brand = candidate
            break
    if "switch" in text:
        return EquipmentType.switch, brand
    if "access point" in text or "wireless" in text or "airos" in text:
        return EquipmentType.access_point, brand or ("Ubiquiti" if "airos" in text else None)
    return EquipmentType.router, brand


class SnmpTransport(DeviceTransport):
    """Health and counter reads over SNMP; configuration primitives are unsupported."""

    name = "snmp"

    def __init__(
        self,
        community: str = "public",
        version: str = "2c",
        timeout_sec: int = 5,
        port: int | None = None,
    ):
        self.community = community
        self.version = version
        self.timeout_sec = timeout_sec
        self.port = port

    def _walk(self, device: DeviceRead, oid: str, bulk: bool = False) -> list[str]:
        args = snmp_args(
            device.ip_address or "",
            device.snmp_community or self.community,
            device.snmp_version or self.version,
            port=device.snmp_port or self.port,
            command="snmpbulkwalk" if bulk else "snmpwalk",
            timeout=self.timeout_sec,
            bulk=bulk,
        )
        return run_snmp_command(args + [oid], timeout=self.timeout_sec * 4)

    def _unsupported(self, command: str):
        raise UnsupportedCommandError(f"{command} is not available over SNMP")

    def create_or_update_rate_limit(self, device: DeviceRead, spec: RateLimitSpec) -> None:
        self._unsupported("create_or_update_rate_limit")

    def set_rate_limit_enabled(self, device: DeviceRead, policy_name: str, enabled: bool) -> None:
        self._unsupported("set_rate_limit_enabled")

    def remove_rate_limit(self, device: DeviceRead, policy_name: str) -> None:
        self._unsupported("remove_rate_limit")

    def set_secret_enabled(self, device: DeviceRead, secret_name: str, enabled: bool) -> None:
        self._unsupported("set_secret_enabled")

    def list_active_sessions(self, device: DeviceRead) -> list[SessionInfo]:
        self._unsupported("list_active_sessions")

    def terminate_session(self, device: DeviceRead, session_id: str) -> None:
        self._unsupported("terminate_session")

    def read_queue_counters(self, device: DeviceRead) -> list[QueueCounters]:
        self._unsupported("read_queue_counters")

    def read_system_resource(self, device: DeviceRead) -> SystemResource:
        uptime_seconds = None
        uptime_value = parse_scalar(self._walk(device, SYS_UPTIME))
        if uptime_value:
            match = re.search(r"\((\d+)\)", uptime_value)
            ticks = int(match.group(1)) if match else parse_int(uptime_value)
            if ticks is not None:
                uptime_seconds = int(ticks / 100)

        cpu_usage = None
        loads = [
            value
            for value in (parse_int(v) for v in parse_walk(self._walk(device, HR_PROCESSOR_LOAD, bulk=True)).values())
            if value is not None
        ]
        if loads:
            cpu_usage = sum(loads) / len(loads)
        elif "mikrotik" in (device.brand or "").lower():
            mikrotik_cpu = parse_int(parse_scalar(self._walk(device, MIKROTIK_CPU)))
            if mikrotik_cpu is not None:
                cpu_usage = float(mikrotik_cpu)

        memory_usage = None
        storage_types = parse_walk(self._walk(device, HR_STORAGE_TYPE, bulk=True))
        ram_indexes = [index for index, kind in storage_types.items() if kind == HR_STORAGE_RAM]
        if ram_indexes:
            sizes = parse_walk(self._walk(device, HR_STORAGE_SIZE, bulk=True))
            used = parse_walk(self._walk(device, HR_STORAGE_USED, bulk=True))
            for index in ram_indexes:
                size_val = parse_int(sizes.get(index))
                used_val = parse_int(used.get(index))
                if size_val and used_val is not None:
                    memory_usage = (used_val / size_val) * 100.0
                    break

        return SystemResource(
            uptime_seconds=uptime_seconds,
            cpu_usage=cpu_usage,
            memory_usage=memory_usage,
        )

    def read_interface_counters(self, device: DeviceRead) -> list[InterfaceCounters]:
        names = parse_walk(self._walk(device, IF_DESCR, bulk=True))
        in_octets = parse_walk(self._walk(device, IF_HC_IN_OCTETS, bulk=True))
        out_octets = parse_walk(self._walk(device, IF_HC_OUT_OCTETS, bulk=True))
        status = parse_walk(self._walk(device, IF_OPER_STATUS, bulk=True))
        return [
            InterfaceCounters(
                name=name,
                rx_bytes=parse_int(in_octets.get(index)) or 0,
                tx_bytes=parse_int(out_octets.get(index)) or 0,
                status=parse_oper_status(status.get(index)),
            )
            for index, name in names.items()
        ]


class SnmpDiscoveryScanner(DiscoveryScanner):
    def __init__(
        self,
        community: str = "public",
        version: str = "2c",
        timeout_sec: int = 2,
        port: int | None = None,
    ):
        self.community = community
        self.version = version
        self.timeout_sec = timeout_sec
        self.port = port

    def _get(self, address: str, oid: str) -> str | None:
        args = snmp_args(
            address,
            self.community,
            self.version,
            port=self.port,
            command="snmpget",
            timeout=self.timeout_sec,
        )
        return parse_scalar(run_snmp_command(args + [oid], timeout=self.timeout_sec * 3))

    def scan(self, address: str) -> DiscoveredDevice | None:
        try:
            descr = self._get(address, SYS_DESCR)
        except DeviceUnreachableError:
            return None
        if descr is None:
            return None
        name = self._get(address, SYS_NAME)
        device_type, brand = classify_device(descr)
        return DiscoveredDevice(
            ip_address=address,
            name=name or None,
            description=descr,
            type=device_type,
            brand=brand,
        )
