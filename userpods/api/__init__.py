"""userpods REST API.

``build_app`` assembles the FastAPI application: the provisioning routes
under ``/api/v1``, plus the unversioned ``/healthz`` and ``/metrics``
endpoints used by probes and scrapers.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from userpods import __version__
from userpods.api.routes import router
from userpods.api.schemas import HealthStatus
from userpods.models.config import UserPodsConfig
from userpods.provisioning import Provisioner


def build_app(provisioner: Provisioner, config: UserPodsConfig) -> FastAPI:
    """Create the FastAPI application bound to ``provisioner``."""
    app = FastAPI(title="userpods", version=__version__)
    app.state.provisioner = provisioner
    app.state.config = config
    app.include_router(router, prefix="/api/v1")

    @app.get("/healthz", response_model=HealthStatus, summary="Liveness probe")
    async def healthz() -> HealthStatus:
        return HealthStatus(status="ok", version=__version__, namespace=config.namespace)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


__all__ = ["build_app"]
