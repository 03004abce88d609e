import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("NETWORK_TRANSPORT", "simulated")
os.environ.setdefault("NETWORK_NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("NETWORK_MONITORING_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from netorch.db import Base
from netorch.services.device_commands import DeviceCommandClient, StaticTransportResolver
from netorch.services.device_commands.simulated import SimulatedTransport
from netorch.services.device_registry import DeviceRegistry
from netorch.services.health_monitor import HealthMonitor
from netorch.services.network_events import NetworkEventRecorder
from netorch.services.orchestrator import NetworkOrchestrator
from netorch.services.qos import QosPolicyManager
from netorch.services.store import NetworkStore
from netorch.services.usage_monitor import UsageMonitor
from tests.mocks import RecordingNotifier


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(session_factory):
    return NetworkStore(session_factory)


@pytest.fixture()
def transport():
    return SimulatedTransport()


@pytest.fixture()
def commands(transport):
    return DeviceCommandClient(StaticTransportResolver(transport), timeout_sec=2)


@pytest.fixture()
def events(store):
    return NetworkEventRecorder(store)


@pytest.fixture()
def registry(store):
    return DeviceRegistry(store)


@pytest.fixture()
def qos(store, commands, events):
    return QosPolicyManager(store, commands, events)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def usage_monitor(store, commands, events, notifier):
    return UsageMonitor(store, commands, events, notifier)


@pytest.fixture()
def health_monitor(store, registry, commands, events, transport):
    return HealthMonitor(store, registry, commands, events, scanner=transport, scan_timeout_sec=2)


@pytest.fixture()
def orchestrator(store, commands, events, qos, usage_monitor, health_monitor):
    orchestrator = NetworkOrchestrator(store, commands, events, qos, usage_monitor, health_monitor)
    usage_monitor.on_suspend = orchestrator.suspend_client
    return orchestrator


