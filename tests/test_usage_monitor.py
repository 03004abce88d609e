from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from netorch.models import ClientStatus
from netorch.schemas.network_events import NetworkEventType
from netorch.services.device_commands.simulated import SimulatedQueue
from netorch.services.qos import policy_name_for
from netorch.services.usage_monitor import (
    BYTES_PER_GB,
    UsageMonitor,
    counter_delta,
    highest_threshold,
    month_start,
)
from tests.mocks import RecordingNotifier
from tests.factories import make_client, make_device, make_package


def test_month_start_uses_configured_timezone():
    nairobi = ZoneInfo("Africa/Nairobi")
    now = datetime(2026, 3, 31, 22, 0, tzinfo=timezone.utc)

    start = month_start(now, nairobi)

    assert start == datetime(2026, 4, 1, 0, 0, tzinfo=nairobi)
    assert month_start(now, ZoneInfo("UTC")) == datetime(2026, 3, 1, tzinfo=timezone.utc)


def test_counter_delta_handles_reset():
    assert counter_delta(None, 500) == 0
    assert counter_delta(100, 150) == 50
    assert counter_delta(150, 20) == 20


def test_highest_threshold_only():
    assert highest_threshold(74.9) is None
    assert highest_threshold(75).percent == 75
    assert highest_threshold(95).percent == 90
    assert highest_threshold(100).action == "suspend"
    assert highest_threshold(180).action == "suspend"


def _capped_client(db_session, cap_gb=10):
    device = make_device(db_session, "d1", "10.0.0.1")
    package = make_package(db_session, "20 Mbps", data_cap_gb=cap_gb)
    client = make_client(db_session, package, [device])
    return client, device


def _use(store, client, gigabytes):
    store.add_usage_sample(client.id, bytes_in=int(gigabytes * BYTES_PER_GB), bytes_out=0)


@pytest.mark.asyncio
async def test_95_percent_fires_only_the_90_warning(db_session, store, usage_monitor, notifier):
    client, _ = _capped_client(db_session)
    _use(store, client, 9.5)

    actions = await usage_monitor.poll_once()

    assert [(a.threshold.percent, a.threshold.action) for a in actions] == [(90, "warning")]
    assert [kind for _, kind, _ in notifier.requests] == ["usage_warning"]
    (event,) = store.list_events(client_id=client.id, event_type=NetworkEventType.usage_threshold)
    assert event.payload.threshold_percent == 90
    assert store.get_client(client.id).status == ClientStatus.active


@pytest.mark.asyncio
async def test_threshold_fires_once_per_month(db_session, store, usage_monitor, notifier):
    client, _ = _capped_client(db_session)
    _use(store, client, 8)

    await usage_monitor.poll_once()
    await usage_monitor.poll_once()
    _use(store, client, 1.2)
    await usage_monitor.poll_once()

    percents = [
        event.payload.threshold_percent
        for event in store.list_events(client_id=client.id, event_type=NetworkEventType.usage_threshold)
    ]
    assert percents == [90, 75]
    assert len(notifier.requests) == 2


@pytest.mark.asyncio
async def test_cap_reached_suspends_and_disconnects(db_session, store, usage_monitor, notifier):
    client, _ = _capped_client(db_session)
    usage_monitor.on_suspend = AsyncMock(return_value=True)
    _use(store, client, 10.5)

    actions = await usage_monitor.poll_once()

    assert actions[0].threshold.action == "suspend"
    assert actions[0].success is True
    usage_monitor.on_suspend.assert_awaited_once_with(client.id)
    assert store.get_client(client.id).status == ClientStatus.suspended
    assert [kind for _, kind, _ in notifier.requests] == ["data_cap_exceeded"]
    # Suspended clients drop out of the monitored set
    assert await usage_monitor.poll_once() == []


@pytest.mark.asyncio
async def test_notification_failure_does_not_abort_cycle(db_session, store, commands, events):
    monitor = UsageMonitor(store, commands, events, RecordingNotifier(fail=True))
    first, _ = _capped_client(db_session)
    second = make_client(db_session, make_package(db_session, "10 Mbps", data_cap_gb=1), [], name="Second")
    _use(store, first, 8)
    _use(store, second, 0.8)

    actions = await monitor.poll_once()

    assert len(actions) == 2
    assert all(action.success is False for action in actions)


@pytest.mark.asyncio
async def test_poll_records_counter_deltas(db_session, store, usage_monitor, transport):
    client, _ = _capped_client(db_session, cap_gb=100)
    name = policy_name_for(client.id)
    queue = SimulatedQueue(name=name, target="x", max_down_mbps=20, max_up_mbps=16)
    queue.bytes_down = 5 * BYTES_PER_GB
    transport.state("10.0.0.1").queues[name] = queue

    await usage_monitor.poll_once()
    assert usage_monitor.usage_report(client.id).total_bytes == 0

    queue.bytes_down += 2 * BYTES_PER_GB
    queue.bytes_up += BYTES_PER_GB
    await usage_monitor.poll_once()

    report = usage_monitor.usage_report(client.id)
    assert report.bytes_in == 2 * BYTES_PER_GB
    assert report.bytes_out == BYTES_PER_GB
    assert report.usage_gb == 3.0
    assert report.percentage_used == 3.0


@pytest.mark.asyncio
async def test_traffic_seen_by_two_devices_is_counted_once(db_session, store, usage_monitor, transport):
    concentrator = make_device(db_session, "bng", "10.0.0.1")
    edge = make_device(db_session, "edge", "10.0.0.2")
    package = make_package(db_session, "20 Mbps", data_cap_gb=10)
    client = make_client(db_session, package, [concentrator, edge])
    name = policy_name_for(client.id)
    queues = []
    for address in ("10.0.0.1", "10.0.0.2"):
        queue = SimulatedQueue(name=name, target="x", max_down_mbps=20, max_up_mbps=16)
        transport.state(address).queues[name] = queue
        queues.append(queue)

    await usage_monitor.poll_once()
    for queue in queues:
        queue.bytes_down += 6 * BYTES_PER_GB
    actions = await usage_monitor.poll_once()

    report = usage_monitor.usage_report(client.id)
    assert report.usage_gb == 6.0
    assert actions == []
    assert store.get_client(client.id).status == ClientStatus.active


@pytest.mark.asyncio
async def test_busiest_device_is_the_measurement(db_session, store, usage_monitor, transport):
    first = make_device(db_session, "bng", "10.0.0.1")
    second = make_device(db_session, "edge", "10.0.0.2")
    package = make_package(db_session, "20 Mbps", data_cap_gb=100)
    client = make_client(db_session, package, [first, second])
    name = policy_name_for(client.id)
    small = SimulatedQueue(name=name, target="x", max_down_mbps=20, max_up_mbps=16)
    large = SimulatedQueue(name=name, target="x", max_down_mbps=20, max_up_mbps=16)
    transport.state("10.0.0.1").queues[name] = small
    transport.state("10.0.0.2").queues[name] = large

    await usage_monitor.poll_once()
    small.bytes_down += BYTES_PER_GB
    large.bytes_down += 2 * BYTES_PER_GB
    await usage_monitor.poll_once()

    assert usage_monitor.usage_report(client.id).bytes_in == 2 * BYTES_PER_GB


@pytest.mark.asyncio
async def test_unreachable_device_skips_sampling(db_session, store, usage_monitor, transport):
    client, _ = _capped_client(db_session)
    transport.set_reachable("10.0.0.1", False)

    assert await usage_monitor.poll_once() == []
    assert usage_monitor.usage_report(client.id).total_bytes == 0


def test_usage_report_excludes_previous_month(db_session, store, usage_monitor):
    client, _ = _capped_client(db_session)
    start = usage_monitor.period_start()
    store.add_usage_sample(client.id, bytes_in=BYTES_PER_GB, bytes_out=0, sampled_at=start - timedelta(hours=1))
    store.add_usage_sample(client.id, bytes_in=BYTES_PER_GB, bytes_out=0, sampled_at=start + timedelta(seconds=1))

    report = usage_monitor.usage_report(client.id)

    assert report.total_bytes == BYTES_PER_GB
    assert report.data_cap_gb == 10


def test_top_consumers(db_session, store, usage_monitor):
    light, _ = _capped_client(db_session)
    heavy = make_client(db_session, None, [], name="Heavy")
    _use(store, light, 1)
    _use(store, heavy, 4)

    reports = usage_monitor.top_consumers(limit=5)

    assert [report.client_id for report in reports] == [heavy.id, light.id]
    assert reports[0].data_cap_gb is None
    with pytest.raises(ValueError):
        usage_monitor.top_consumers(limit=0)
