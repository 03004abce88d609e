"""In-memory view of the managed device catalog and its capability sets."""

from __future__ import annotations

import enum
import logging
from datetime import datetime
from uuid import UUID

from netorch.models.equipment import DeviceStatus, EquipmentType
from netorch.schemas.network import DeviceRead
from netorch.services.common import coerce_uuid

logger = logging.getLogger(__name__)


class Capability(enum.Enum):
    routing = "routing"
    qos = "qos"
    firewall = "firewall"
    vpn = "vpn"
    vlan = "vlan"
    switching = "switching"
    wireless = "wireless"
    routeros = "routeros"
    api = "api"
    snmp = "snmp"


FAMILY_CAPABILITIES: dict[EquipmentType, frozenset[Capability]] = {
    EquipmentType.router: frozenset(
        {Capability.routing, Capability.qos, Capability.firewall, Capability.vpn}
    ),
    EquipmentType.switch: frozenset({Capability.switching, Capability.vlan}),
    EquipmentType.access_point: frozenset({Capability.wireless}),
    EquipmentType.other: frozenset(),
}

_ROUTEROS_MODEL_PREFIXES = ("ccr", "rb", "crs", "hap", "hex")
_SNMP_BRANDS = ("ubiquiti", "cisco", "tp-link", "tplink", "cambium", "huawei", "juniper")


def capabilities_of(device: DeviceRead) -> frozenset[Capability]:
    """Derive a capability set from device family and brand/model hints.

    Unrecognized brands fall back to the family defaults; brand hints only
    add capabilities, they never remove the family's.
    """
    caps = set(FAMILY_CAPABILITIES.get(device.type, frozenset()))
    brand = (device.brand or "").strip().lower()
    model = (device.model or "").strip().lower()

    if "mikrotik" in brand or "routeros" in brand or model.startswith(_ROUTEROS_MODEL_PREFIXES):
        caps |= {Capability.routeros, Capability.api, Capability.snmp}
        if device.type == EquipmentType.switch:
            # CRS switches run RouterOS and shape traffic like routers
            caps.add(Capability.qos)
        if device.type == EquipmentType.access_point:
            caps |= {Capability.routing, Capability.qos}
    elif any(name in brand for name in _SNMP_BRANDS):
        caps.add(Capability.snmp)
    return frozenset(caps)


class DeviceRegistry:
    """Cache of approved, IP-addressed devices keyed by device id.

    ``load()`` replaces the cache wholesale so repeated refreshes never
    accumulate stale or duplicate entries.
    """

    def __init__(self, store):
        self.store = store
        self._devices: dict[UUID, DeviceRead] = {}

    def load(self) -> list[DeviceRead]:
        devices = self.store.list_managed_devices()
        refreshed: dict[UUID, DeviceRead] = {}
        for device in devices:
            refreshed[device.id] = device
        self._devices = refreshed
        logger.info("Device registry loaded %d devices", len(refreshed))
        return list(refreshed.values())

    def get(self, device_id) -> DeviceRead | None:
        return self._devices.get(coerce_uuid(device_id))

    def devices(self) -> list[DeviceRead]:
        return list(self._devices.values())

    def __len__(self) -> int:
        return len(self._devices)

    def mark_status(
        self, device_id, status: DeviceStatus, last_seen_at: datetime | None = None
    ) -> None:
        key = coerce_uuid(device_id)
        device = self._devices.get(key)
        if not device:
            return
        update = {"status": status}
        if last_seen_at is not None:
            update["last_seen_at"] = last_seen_at
        self._devices[key] = device.model_copy(update=update)

    @staticmethod
    def capabilities_of(device: DeviceRead) -> frozenset[Capability]:
        return capabilities_of(device)
