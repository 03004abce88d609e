"""Records network events: one durable row per device acted upon."""

from __future__ import annotations

import logging

from netorch.schemas.network_events import NetworkEventCreate, NetworkEventRead
from netorch.services.common import coerce_uuid

logger = logging.getLogger(__name__)


class NetworkEventRecorder:
    def __init__(self, store):
        self.store = store

    def record(
        self,
        payload,
        success: bool,
        triggered_by: str,
        client_id=None,
        equipment_id=None,
    ) -> NetworkEventRead:
        event = NetworkEventCreate(
            client_id=coerce_uuid(client_id),
            equipment_id=coerce_uuid(equipment_id),
            triggered_by=triggered_by,
            success=success,
            payload=payload,
        )
        saved = self.store.append_event(event)
        log = logger.info if success else logger.warning
        log(
            "Network event %s client=%s device=%s success=%s by=%s",
            saved.event_type.value,
            client_id,
            equipment_id,
            success,
            triggered_by,
        )
        return saved
