import uuid

import pytest

from netorch.models import EquipmentType
from netorch.schemas.network import ServicePackageRead
from netorch.schemas.network_events import NetworkEventType
from netorch.services.qos import (
    QosPolicyManager,
    build_policy,
    parse_speed_mbps,
    policy_name_for,
    resolve_priority,
)
from tests.factories import make_client, make_device, make_package


def _package(speed, upload_speed=None):
    return ServicePackageRead(id=uuid.uuid4(), name="p", speed=speed, upload_speed=upload_speed)


def test_speed_parsing_and_priority():
    policy = build_policy(_package("50 Mbps"))
    assert (policy.max_down_mbps, policy.max_up_mbps, policy.priority) == (50, 40, "medium")
    assert build_policy(_package("120 Mbps")).priority == "high"
    assert build_policy(_package("20 Mbps")).priority == "low"


def test_explicit_upload_speed_wins():
    policy = build_policy(_package("100 Mbps", upload_speed="20 Mbps"))
    assert policy.max_up_mbps == 20


def test_unparseable_speed():
    assert parse_speed_mbps("unlimited") is None
    assert parse_speed_mbps(None) is None
    assert build_policy(_package("fast")) is None


def test_priority_thresholds():
    assert resolve_priority(100) == "high"
    assert resolve_priority(99) == "medium"
    assert resolve_priority(50) == "medium"
    assert resolve_priority(49) == "low"


def test_upload_ratio_is_configurable(store, commands, events):
    with pytest.raises(ValueError):
        QosPolicyManager(store, commands, events, upload_ratio=1.5)
    policy = build_policy(_package("50 Mbps"), upload_ratio=0.5)
    assert policy.max_up_mbps == 25


@pytest.mark.asyncio
async def test_apply_policy_configures_every_device(db_session, qos, store, transport):
    d1 = make_device(db_session, "d1", "10.0.0.1")
    d2 = make_device(db_session, "d2", "10.0.0.2")
    package = make_package(db_session, "50 Mbps")
    client = make_client(db_session, package, [d1, d2], ip_address="10.1.0.5")

    ok = await qos.apply_policy(client.id, package.id)

    assert ok
    name = policy_name_for(client.id)
    for address in ("10.0.0.1", "10.0.0.2"):
        queue = transport.state(address).queues[name]
        assert (queue.max_down_mbps, queue.max_up_mbps, queue.target) == (50, 40, "10.1.0.5")
    policy = await qos.get_policy(client.id)
    assert policy.priority == "medium"
    assert set(policy.device_ids) == {d1.id, d2.id}
    applied = store.list_events(client_id=client.id, event_type=NetworkEventType.qos_policy_applied)
    assert len(applied) == 2
    assert all(event.success for event in applied)


@pytest.mark.asyncio
async def test_apply_policy_uses_pppoe_interface_without_address(db_session, qos, transport):
    device = make_device(db_session, "d1", "10.0.0.1")
    package = make_package(db_session, "20 Mbps")
    client = make_client(db_session, package, [device], pppoe_username="alice")

    assert await qos.apply_policy(client.id, package.id)

    assert transport.state("10.0.0.1").queues[policy_name_for(client.id)].target == "<pppoe-alice>"


@pytest.mark.asyncio
async def test_apply_policy_without_devices_fails_cleanly(db_session, qos, store, transport):
    package = make_package(db_session, "20 Mbps")
    client = make_client(db_session, package, [])

    assert await qos.apply_policy(client.id, package.id) is False
    assert transport.calls == []
    assert store.list_events(client_id=client.id) == []
    assert await qos.get_policy(client.id) is None


@pytest.mark.asyncio
async def test_apply_policy_skips_devices_without_qos(db_session, qos, transport):
    router = make_device(db_session, "r", "10.0.0.1")
    switch = make_device(
        db_session, "s", "10.0.0.2", type=EquipmentType.switch, brand="Acme", model="AS-2400"
    )
    package = make_package(db_session, "20 Mbps")
    client = make_client(db_session, package, [router, switch])

    assert await qos.apply_policy(client.id, package.id)
    assert transport.calls_for("10.0.0.2") == []


@pytest.mark.asyncio
async def test_apply_policy_records_attempt_even_on_failure(db_session, qos, store, transport):
    device = make_device(db_session, "d1", "10.0.0.1")
    transport.set_reachable("10.0.0.1", False)
    package = make_package(db_session, "20 Mbps")
    client = make_client(db_session, package, [device])

    assert await qos.apply_policy(client.id, package.id) is False
    assert await qos.get_policy(client.id) is not None
    (event,) = store.list_events(client_id=client.id)
    assert event.success is False


@pytest.mark.asyncio
async def test_remove_policy_without_active_policy_is_noop(db_session, qos, transport):
    client = make_client(db_session, None, [])

    assert await qos.remove_policy(client.id) is True
    assert transport.calls == []


@pytest.mark.asyncio
async def test_remove_policy_clears_devices_and_map(db_session, qos, store, transport):
    device = make_device(db_session, "d1", "10.0.0.1")
    package = make_package(db_session, "20 Mbps")
    client = make_client(db_session, package, [device])
    await qos.apply_policy(client.id, package.id)

    assert await qos.remove_policy(client.id)

    assert transport.state("10.0.0.1").queues == {}
    assert await qos.get_policy(client.id) is None
    removed = store.list_events(client_id=client.id, event_type=NetworkEventType.qos_policy_removed)
    assert len(removed) == 1


@pytest.mark.asyncio
async def test_update_policy_keeps_single_entry(db_session, qos, transport):
    device = make_device(db_session, "d1", "10.0.0.1")
    basic = make_package(db_session, "20 Mbps")
    premium = make_package(db_session, "120 Mbps")
    client = make_client(db_session, basic, [device])

    await qos.apply_policy(client.id, basic.id)
    await qos.update_policy(client.id, premium.id)
    await qos.apply_policy(client.id, premium.id)

    policies = [p for p in await qos.active_policies() if p.client_id == client.id]
    assert len(policies) == 1
    assert policies[0].priority == "high"
    assert len(transport.state("10.0.0.1").queues) == 1


@pytest.mark.asyncio
async def test_update_policy_applies_even_when_remove_fails(db_session, qos, transport):
    device = make_device(db_session, "d1", "10.0.0.1")
    basic = make_package(db_session, "20 Mbps")
    premium = make_package(db_session, "60 Mbps")
    client = make_client(db_session, basic, [device])
    await qos.apply_policy(client.id, basic.id)
    transport.reject("10.0.0.1", "remove_rate_limit")

    ok = await qos.update_policy(client.id, premium.id)

    assert ok is False
    assert transport.state("10.0.0.1").queues[policy_name_for(client.id)].max_down_mbps == 60
    assert (await qos.get_policy(client.id)).max_down_mbps == 60


@pytest.mark.asyncio
async def test_reapply_removes_queue_from_unassigned_device(db_session, qos, transport):
    d1 = make_device(db_session, "d1", "10.0.0.1")
    d2 = make_device(db_session, "d2", "10.0.0.2")
    package = make_package(db_session, "20 Mbps")
    client = make_client(db_session, package, [d1, d2])
    await qos.apply_policy(client.id, package.id)

    for assignment in client.equipment_assignments:
        if assignment.equipment_id == d2.id:
            assignment.is_active = False
    db_session.commit()
    await qos.apply_policy(client.id, package.id)

    assert transport.state("10.0.0.2").queues == {}
    assert (await qos.get_policy(client.id)).device_ids == (d1.id,)


@pytest.mark.asyncio
async def test_initialize_from_database_issues_no_commands(db_session, qos, transport):
    device = make_device(db_session, "d1", "10.0.0.1")
    package = make_package(db_session, "20 Mbps")
    client = make_client(db_session, package, [device])
    make_client(db_session, None, [device], name="No package")

    count = await qos.initialize_from_database()

    assert count == 1
    assert (await qos.get_policy(client.id)).max_down_mbps == 20
    assert transport.calls == []


@pytest.mark.asyncio
async def test_compliance_needs_sustained_overage(db_session, store, commands, events, transport):
    manager = QosPolicyManager(store, commands, events, consecutive_samples=2)
    device = make_device(db_session, "d1", "10.0.0.1")
    package = make_package(db_session, "20 Mbps")
    client = make_client(db_session, package, [device])
    await manager.apply_policy(client.id, package.id)
    queue = transport.state("10.0.0.1").queues[policy_name_for(client.id)]

    queue.download_bps = 23_000_000
    assert await manager.check_compliance() == []
    assert await manager.check_compliance() == [client.id]
    assert await manager.check_compliance() == []

    violations = store.list_events(
        client_id=client.id, event_type=NetworkEventType.qos_compliance_violation
    )
    assert len(violations) == 1
    assert violations[0].payload.observed_mbps == 23.0
    assert violations[0].payload.threshold_mbps == 22.0


@pytest.mark.asyncio
async def test_compliance_tolerates_burst_within_band(db_session, qos, transport):
    device = make_device(db_session, "d1", "10.0.0.1")
    package = make_package(db_session, "20 Mbps")
    client = make_client(db_session, package, [device])
    await qos.apply_policy(client.id, package.id)
    transport.state("10.0.0.1").queues[policy_name_for(client.id)].download_bps = 21_500_000

    for _ in range(3):
        assert await qos.check_compliance() == []

