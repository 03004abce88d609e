import subprocess
import uuid
from unittest.mock import MagicMock, patch

import pytest
from routeros_api.exceptions import RouterOsApiCommunicationError, RouterOsApiConnectionError

from netorch.models import EquipmentType
from netorch.schemas.network import DeviceRead
from netorch.services.device_commands import (
    CapabilityTransportResolver,
    CommandErrorKind,
    DeviceCommandClient,
    StaticTransportResolver,
)
from netorch.services.device_commands.base import DeviceConfigurationError, RateLimitSpec
from netorch.services.device_commands.routeros import RouterOsTransport, parse_uptime
from netorch.services.device_commands.simulated import SimulatedTransport
from netorch.services.device_commands.snmp import (
    SnmpDiscoveryScanner,
    SnmpTransport,
    classify_device,
    parse_walk,
)


def _device(ip="10.0.0.1", **kwargs):
    kwargs.setdefault("type", EquipmentType.router)
    kwargs.setdefault("brand", "MikroTik")
    kwargs.setdefault("api_username", "admin")
    return DeviceRead(id=uuid.uuid4(), name="edge", ip_address=ip, **kwargs)


# =============================================================================
# Command client over the simulated transport
# =============================================================================

@pytest.mark.asyncio
async def test_rate_limit_create_then_update(commands, transport):
    device = _device()

    first = await commands.create_or_update_rate_limit(device, "client-1", "10.1.0.5", 30, 24)
    second = await commands.create_or_update_rate_limit(device, "client-1", "10.1.0.5", 50, 40)

    assert first.ok and second.ok
    queues = transport.state("10.0.0.1").queues
    assert list(queues) == ["client-1"]
    assert queues["client-1"].max_down_mbps == 50
    assert queues["client-1"].max_up_mbps == 40


@pytest.mark.asyncio
async def test_disable_missing_secret_and_queue_succeeds(commands):
    device = _device()

    secret = await commands.set_secret_enabled(device, "ghost", False)
    queue = await commands.set_rate_limit_enabled(device, "client-ghost", False)
    removed = await commands.remove_rate_limit(device, "client-ghost")

    assert secret.ok and queue.ok and removed.ok


@pytest.mark.asyncio
async def test_enable_missing_secret_is_rejected(commands):
    result = await commands.set_secret_enabled(_device(), "ghost", True)

    assert not result.ok
    assert result.error_kind == CommandErrorKind.rejected


@pytest.mark.asyncio
async def test_unreachable_device_reports_failure(commands, transport):
    transport.add_device("10.0.0.9", reachable=False)

    result = await commands.read_system_resource(_device(ip="10.0.0.9"))

    assert not result.ok
    assert result.error_kind == CommandErrorKind.unreachable


@pytest.mark.asyncio
async def test_command_timeout_reports_failure():
    slow = SimulatedTransport(delay_sec=0.5)
    client = DeviceCommandClient(StaticTransportResolver(slow), timeout_sec=0.05)

    result = await client.read_system_resource(_device())

    assert not result.ok
    assert result.error_kind == CommandErrorKind.timeout


@pytest.mark.asyncio
async def test_missing_capability_is_unsupported_without_calling_device(commands, transport):
    switch = _device(type=EquipmentType.switch, brand="Acme")

    result = await commands.set_secret_enabled(switch, "client1", False)

    assert result.error_kind == CommandErrorKind.unsupported
    assert transport.calls == []


@pytest.mark.asyncio
async def test_device_without_address_is_misconfigured(commands):
    result = await commands.read_system_resource(_device(ip=None))

    assert result.error_kind == CommandErrorKind.misconfigured


@pytest.mark.asyncio
async def test_bad_arguments_raise(commands):
    with pytest.raises(ValueError):
        await commands.create_or_update_rate_limit(_device(), "", "10.1.0.5", 30, 24)
    with pytest.raises(ValueError):
        await commands.create_or_update_rate_limit(_device(), "client-1", "10.1.0.5", 0, 24)
    with pytest.raises(ValueError):
        await commands.terminate_session(_device(), " ")


def test_capability_resolver_routes_by_brand():
    routeros = MagicMock()
    snmp = MagicMock()
    resolver = CapabilityTransportResolver(routeros=routeros, snmp=snmp)

    assert resolver.transport_for(_device(brand="MikroTik")) is routeros
    assert resolver.transport_for(_device(brand="Ubiquiti")) is snmp


# =============================================================================
# RouterOS transport
# =============================================================================

def _mock_pool(rows):
    pool = MagicMock()
    resource = pool.get_api.return_value.get_resource.return_value
    resource.get.return_value = rows
    return pool, resource


def test_routeros_adds_missing_queue():
    pool, resource = _mock_pool([])
    with patch(
        "netorch.services.device_commands.routeros.routeros_api.RouterOsApiPool",
        return_value=pool,
    ):
        RouterOsTransport().create_or_update_rate_limit(
            _device(), RateLimitSpec("client-1", "10.1.0.5", max_down_mbps=30, max_up_mbps=24)
        )

    resource.add.assert_called_once_with(
        name="client-1", target="10.1.0.5", **{"max-limit": "24M/30M", "disabled": "no"}
    )
    pool.disconnect.assert_called_once()


def test_routeros_rewrites_existing_queue_limits():
    pool, resource = _mock_pool([{"id": "*1A", "name": "client-1"}])
    with patch(
        "netorch.services.device_commands.routeros.routeros_api.RouterOsApiPool",
        return_value=pool,
    ):
        RouterOsTransport().create_or_update_rate_limit(
            _device(), RateLimitSpec("client-1", "10.1.0.5", max_down_mbps=50, max_up_mbps=40)
        )

    resource.set.assert_called_once_with(
        id="*1A", target="10.1.0.5", **{"max-limit": "40M/50M", "disabled": "no"}
    )
    resource.add.assert_not_called()


def test_routeros_updates_existing_queue():
    pool, resource = _mock_pool([{"id": "*1A", "name": "client-1"}])
    with patch(
        "netorch.services.device_commands.routeros.routeros_api.RouterOsApiPool",
        return_value=pool,
    ):
        RouterOsTransport().set_rate_limit_enabled(_device(), "client-1", False)

    resource.set.assert_called_once_with(id="*1A", disabled="yes")


def test_routeros_disable_missing_secret_is_noop():
    pool, resource = _mock_pool([])
    with patch(
        "netorch.services.device_commands.routeros.routeros_api.RouterOsApiPool",
        return_value=pool,
    ):
        RouterOsTransport().set_secret_enabled(_device(), "client1", False)

    resource.set.assert_not_called()
    pool.disconnect.assert_called_once()


@pytest.mark.asyncio
async def test_routeros_connection_error_is_unreachable():
    pool = MagicMock()
    pool.get_api.side_effect = RouterOsApiConnectionError("connection refused")
    with patch(
        "netorch.services.device_commands.routeros.routeros_api.RouterOsApiPool",
        return_value=pool,
    ):
        client = DeviceCommandClient(StaticTransportResolver(RouterOsTransport()))
        result = await client.read_system_resource(_device())

    assert result.error_kind == CommandErrorKind.unreachable
    pool.disconnect.assert_called_once()


@pytest.mark.asyncio
async def test_routeros_trap_is_rejected():
    pool, resource = _mock_pool([])
    resource.add.side_effect = RouterOsApiCommunicationError("failure: bad target", b"")
    with patch(
        "netorch.services.device_commands.routeros.routeros_api.RouterOsApiPool",
        return_value=pool,
    ):
        client = DeviceCommandClient(StaticTransportResolver(RouterOsTransport()))
        result = await client.create_or_update_rate_limit(_device(), "client-1", "bogus", 30, 24)

    assert result.error_kind == CommandErrorKind.rejected


@pytest.mark.asyncio
async def test_routeros_without_credentials_is_misconfigured():
    client = DeviceCommandClient(StaticTransportResolver(RouterOsTransport()))

    result = await client.read_system_resource(_device(api_username=None))

    assert result.error_kind == CommandErrorKind.misconfigured


def test_routeros_system_resource_parsing():
    pool, _ = _mock_pool(
        [{"uptime": "1w2d03:04:05", "cpu-load": "12", "total-memory": "1000", "free-memory": "250"}]
    )
    with patch(
        "netorch.services.device_commands.routeros.routeros_api.RouterOsApiPool",
        return_value=pool,
    ):
        resource = RouterOsTransport().read_system_resource(_device())

    assert resource.uptime_seconds == 788645
    assert resource.cpu_usage == 12.0
    assert resource.memory_usage == 75.0


def test_routeros_queue_counters_parsing():
    pool, _ = _mock_pool(
        [{"name": "client-1", "target": "10.1.0.5/32", "rate": "1000/2000", "bytes": "300/400"}]
    )
    with patch(
        "netorch.services.device_commands.routeros.routeros_api.RouterOsApiPool",
        return_value=pool,
    ):
        counters = RouterOsTransport().read_queue_counters(_device())

    assert counters[0].upload_bps == 1000
    assert counters[0].download_bps == 2000
    assert counters[0].bytes_up == 300
    assert counters[0].bytes_down == 400


def test_parse_uptime_formats():
    assert parse_uptime("3h4m5s") == 11045
    assert parse_uptime("00:00:10") == 10
    assert parse_uptime("") is None
    assert parse_uptime("garbage") is None


# =============================================================================
# SNMP transport
# =============================================================================

def _completed(stdout="", returncode=0, stderr=""):
    return MagicMock(stdout=stdout, returncode=returncode, stderr=stderr)


def test_parse_walk_skips_missing_values():
    lines = [
        '.1.3.6.1.2.1.2.2.1.2.1 = STRING: "ether1"',
        ".1.3.6.1.2.1.2.2.1.2.2 = No Such Instance currently exists at this OID",
        "garbage",
    ]

    assert parse_walk(lines) == {"1": "ether1"}


def test_snmp_interface_counters():
    outputs = {
        ".1.3.6.1.2.1.2.2.1.2": '.1.3.6.1.2.1.2.2.1.2.1 = STRING: "ether1"',
        ".1.3.6.1.2.1.31.1.1.1.6": ".1.3.6.1.2.1.31.1.1.1.6.1 = Counter64: 1500",
        ".1.3.6.1.2.1.31.1.1.1.10": ".1.3.6.1.2.1.31.1.1.1.10.1 = Counter64: 2500",
        ".1.3.6.1.2.1.2.2.1.8": ".1.3.6.1.2.1.2.2.1.8.1 = INTEGER: up(1)",
    }

    def fake_run(args, **kwargs):
        return _completed(outputs[args[-1]])

    with patch("netorch.services.device_commands.snmp.subprocess.run", side_effect=fake_run):
        counters = SnmpTransport().read_interface_counters(_device(brand="Cisco"))

    assert len(counters) == 1
    assert counters[0].name == "ether1"
    assert counters[0].rx_bytes == 1500
    assert counters[0].tx_bytes == 2500
    assert counters[0].status == "up"


@pytest.mark.asyncio
async def test_snmp_timeout_is_unreachable():
    client = DeviceCommandClient(StaticTransportResolver(SnmpTransport()))
    with patch(
        "netorch.services.device_commands.snmp.subprocess.run",
        return_value=_completed(returncode=1, stderr="Timeout: No Response from 10.0.0.1"),
    ):
        result = await client.read_system_resource(_device(brand="Cisco"))

    assert result.error_kind == CommandErrorKind.unreachable


@pytest.mark.asyncio
async def test_snmp_cannot_configure():
    client = DeviceCommandClient(StaticTransportResolver(SnmpTransport()))

    result = await client.create_or_update_rate_limit(_device(brand="Cisco"), "client-1", "10.1.0.5", 30, 24)

    assert result.error_kind == CommandErrorKind.unsupported


def test_snmp_missing_binary_is_misconfigured():
    with patch(
        "netorch.services.device_commands.snmp.subprocess.run",
        side_effect=FileNotFoundError("snmpwalk"),
    ):
        with pytest.raises(DeviceConfigurationError):
            SnmpTransport().read_interface_counters(_device())


def test_discovery_scan_classifies_device():
    outputs = {
        ".1.3.6.1.2.1.1.1.0": '.1.3.6.1.2.1.1.1.0 = STRING: "RouterOS CCR2004-16G-2S+"',
        ".1.3.6.1.2.1.1.5.0": '.1.3.6.1.2.1.1.5.0 = STRING: "edge-1"',
    }

    def fake_run(args, **kwargs):
        return _completed(outputs[args[-1]])

    with patch("netorch.services.device_commands.snmp.subprocess.run", side_effect=fake_run):
        found = SnmpDiscoveryScanner().scan("10.0.0.7")

    assert found.ip_address == "10.0.0.7"
    assert found.name == "edge-1"
    assert found.type == EquipmentType.router
    assert found.brand == "MikroTik"


def test_discovery_scan_no_answer():
    with patch(
        "netorch.services.device_commands.snmp.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="snmpget", timeout=6),
    ):
        assert SnmpDiscoveryScanner().scan("10.0.0.8") is None


def test_classify_device():
    assert classify_device("RouterOS RB4011") == (EquipmentType.router, "MikroTik")
    assert classify_device("Cisco IOS Software, C2960 Switch") == (EquipmentType.switch, "Cisco")
    assert classify_device("Linux 2.6 airOS") == (EquipmentType.access_point, "Ubiquiti")
    assert classify_device(None) == (EquipmentType.router, None)
