"""Application lifespan: startup and shutdown.

Single place for all startup/shutdown logic (SRP). Used by main.py;
no business logic here, only wiring of infrastructure (shared HTTP
client, telemetry, DB engine dispose).
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI

from mailbridge.core.config import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def create_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup then yield; on exit run shutdown.

    Startup: logging, shared HTTP client, telemetry (if enabled).
    Shutdown: HTTP client close, telemetry shutdown, SQL engine dispose.
    """
    settings = get_settings()

    # ---- Startup ----
    from mailbridge.shared.telemetry.logging import setup_logging

    setup_logging()

    # Shared client for Graph, token endpoints and the downstream consumer.
    app.state.http_client = httpx.AsyncClient(
        timeout=settings.provider_timeout_seconds
    )

    if settings.telemetry_enabled:
        from mailbridge.infrastructure.persistence.database import get_engine
        from mailbridge.shared.telemetry.telemetry import TelemetryConfig, set_telemetry

        telemetry = TelemetryConfig(
            service_name=settings.app_name,
            service_version=settings.app_version,
            enabled=True,
            environment=settings.telemetry_environment,
        )
        telemetry.setup_telemetry(
            exporter_type=settings.telemetry_exporter,
            otlp_endpoint=settings.telemetry_otlp_endpoint,
            sample_rate=settings.telemetry_sample_rate,
        )
        set_telemetry(telemetry)
        telemetry.instrument_fastapi(app)
        telemetry.instrument_sqlalchemy(get_engine())
        logger.info("Telemetry initialized")

    yield

    # ---- Shutdown ----
    if getattr(app.state, "http_client", None) is not None:
        await app.state.http_client.aclose()
        app.state.http_client = None
        app.state.oauth_drivers = None
        logger.info("Shared HTTP client closed")

    from mailbridge.shared.telemetry.telemetry import get_telemetry

    telemetry_instance = get_telemetry()
    if telemetry_instance is not None:
        telemetry_instance.shutdown()
        logger.info("Telemetry shutdown complete")

    from mailbridge.infrastructure.persistence.database import dispose_engine

    await dispose_engine()
