"""
Network Orchestration API Endpoints

Provides REST API for:
- Client disconnect / reconnect / speed limit changes
- Device status dashboard
- Client network event history and usage
"""
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from netorch.schemas.network import (
    ClientActionResponse,
    DeviceStatusRead,
    SpeedLimitRequest,
    UsageReport,
)
from netorch.schemas.network_events import NetworkEventRead, NetworkEventType
from netorch.services.orchestrator import NetworkOrchestrator

router = APIRouter(prefix="/network", tags=["network"])


def get_orchestrator(request: Request) -> NetworkOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Network orchestration is not running")
    return orchestrator


def _require_client(orchestrator: NetworkOrchestrator, client_id: UUID) -> None:
    if orchestrator.store.get_client(client_id) is None:
        raise HTTPException(status_code=404, detail="Client not found")


def _action_response(client_id: UUID, action: str, ok: bool) -> ClientActionResponse:
    if not ok:
        raise HTTPException(
            status_code=502,
            detail={
                "code": "network_action_failed",
                "message": f"{action} did not complete on every device",
                "details": {"client_id": str(client_id), "action": action},
            },
        )
    return ClientActionResponse(client_id=client_id, action=action, success=True)


# =============================================================================
# CLIENT ACTIONS
# =============================================================================

@router.post("/clients/{client_id}/disconnect", response_model=ClientActionResponse)
async def disconnect_client(
    client_id: UUID,
    orchestrator: NetworkOrchestrator = Depends(get_orchestrator),
):
    _require_client(orchestrator, client_id)
    ok = await orchestrator.disconnect_client(client_id, triggered_by="api")
    return _action_response(client_id, "disconnect", ok)


@router.post("/clients/{client_id}/reconnect", response_model=ClientActionResponse)
async def reconnect_client(
    client_id: UUID,
    orchestrator: NetworkOrchestrator = Depends(get_orchestrator),
):
    _require_client(orchestrator, client_id)
    ok = await orchestrator.reconnect_client(client_id, triggered_by="api")
    return _action_response(client_id, "reconnect", ok)


@router.post("/clients/{client_id}/speed-limit", response_model=ClientActionResponse)
async def apply_speed_limit(
    client_id: UUID,
    payload: SpeedLimitRequest,
    orchestrator: NetworkOrchestrator = Depends(get_orchestrator),
):
    _require_client(orchestrator, client_id)
    if orchestrator.store.get_service_package(payload.package_id) is None:
        raise HTTPException(status_code=404, detail="Service package not found")
    ok = await orchestrator.apply_speed_limit(client_id, payload.package_id, triggered_by="api")
    return _action_response(client_id, "speed_limit", ok)


@router.get("/clients/{client_id}/events", response_model=list[NetworkEventRead])
def list_client_events(
    client_id: UUID,
    event_type: NetworkEventType | None = None,
    limit: int = Query(100, ge=1, le=500),
    orchestrator: NetworkOrchestrator = Depends(get_orchestrator),
):
    _require_client(orchestrator, client_id)
    return orchestrator.list_events(client_id=client_id, event_type=event_type, limit=limit)


@router.get("/clients/{client_id}/usage", response_model=UsageReport)
def client_usage(
    client_id: UUID,
    orchestrator: NetworkOrchestrator = Depends(get_orchestrator),
):
    report = orchestrator.usage.usage_report(client_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return report


@router.get("/usage/top", response_model=list[UsageReport])
def top_consumers(
    limit: int = Query(10, ge=1, le=100),
    orchestrator: NetworkOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.usage.top_consumers(limit=limit)


# =============================================================================
# DEVICES
# =============================================================================

@router.get("/devices/status", response_model=list[DeviceStatusRead])
def device_status(orchestrator: NetworkOrchestrator = Depends(get_orchestrator)):
    """Managed devices with their latest health sample."""
    return orchestrator.get_device_status()
