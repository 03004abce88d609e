import logging

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from netorch.api.network import router as network_router
from netorch.config import settings
from netorch.errors import register_error_handlers
from netorch.logging import configure_logging
from netorch.services.orchestrator import NetworkOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


def create_app(
    orchestrator: NetworkOrchestrator | None = None,
    monitoring_enabled: bool | None = None,
) -> FastAPI:
    app = FastAPI(title="netorch")
    app.state.orchestrator = orchestrator
    register_error_handlers(app)
    app.include_router(network_router)

    run_monitoring = settings.monitoring_enabled if monitoring_enabled is None else monitoring_enabled

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics():
        data = generate_latest()
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    @app.on_event("startup")
    async def _start_orchestration():
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator(settings)
        if run_monitoring:
            await app.state.orchestrator.start_monitoring()

    @app.on_event("shutdown")
    async def _stop_orchestration():
        if app.state.orchestrator is not None:
            await app.state.orchestrator.close()

    return app


configure_logging()
app = create_app()
