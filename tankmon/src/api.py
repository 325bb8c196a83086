"""
Read-only HTTP surface over a running :class:`~tankmon.src.main.Monitor`.

Serves the monitor's projections to the dashboard and report exporter:
the latest annotated reading, the chart series, usage summaries and daily
records, alerts and cache status.  ``POST /v1/refresh`` triggers a manual
refresh, which joins any tick already in flight.  No authentication: the
API is meant to be bound to localhost or a private network.

The module-level ``app`` owns a monitor: its lifespan loads
:class:`~tankmon.src.config.TankSettings`, opens the monitor and runs the
poll and history loops behind the API until the server shuts down.
``tankmon-api`` (:func:`serve`) runs it under uvicorn.  An app built by
:func:`create_app` around an existing monitor leaves that monitor's
lifecycle to its host.

CHANGELOG:
- 2026-10-18: Run the monitor from the app lifespan and serve it with
  uvicorn (STORY-014)
- 2026-10-10: Initial creation (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated, Any

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request

from tankmon.src.config import TankSettings
from tankmon.src.main import Monitor, configure_logging, log_config_summary, run_loops
from tankmon.src.models import (
    Alert,
    DailyUsageRecord,
    ExportData,
    HistoryPoint,
    SystemStatus,
    UsageSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["tank"])
health_router = APIRouter(tags=["health"])


def _get_monitor(request: Request) -> Monitor:
    return request.app.state.monitor


MonitorDep = Annotated[Monitor, Depends(_get_monitor)]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@health_router.get("/health")
async def health(monitor: MonitorDep) -> dict[str, Any]:
    """Liveness plus the sensor link status."""
    return {"status": "ok", "connection_status": monitor.connection_status}


@router.get("/realtime")
async def realtime(monitor: MonitorDep) -> dict[str, Any]:
    """Return the latest annotated reading and the link status.

    Raises:
        HTTPException: 404 before the first tick has completed.
    """
    reading = monitor.latest
    if reading is None:
        raise HTTPException(status_code=404, detail="No reading available yet.")
    return {
        "reading": reading.model_dump(mode="json"),
        "connection_status": monitor.connection_status,
    }


@router.get("/history")
async def history(
    monitor: MonitorDep,
    hours: Annotated[int | None, Query(ge=1, le=24 * 7)] = None,
) -> list[HistoryPoint]:
    """Return the chart series; ``hours`` fetches a specific window."""
    if hours is None:
        return monitor.history
    return await monitor.telemetry.fetch_history(hours)


@router.get("/usage/summary")
async def usage_summary(monitor: MonitorDep) -> UsageSummary:
    return monitor.summary()


@router.get("/usage/daily")
async def usage_daily(
    monitor: MonitorDep,
    days: Annotated[int, Query(ge=1, le=366)] = 30,
) -> list[DailyUsageRecord]:
    return monitor.historical_usage(days)


@router.get("/usage/hourly")
async def usage_hourly(monitor: MonitorDep) -> list[float]:
    return monitor.hourly_usage()


@router.get("/export")
async def export(monitor: MonitorDep) -> ExportData:
    """Summary, full daily history and today's buckets for the workbook export."""
    return monitor.export_data()


@router.get("/alerts")
async def alerts(monitor: MonitorDep) -> list[Alert]:
    return monitor.alerts()


@router.get("/status")
async def status(monitor: MonitorDep) -> SystemStatus:
    return monitor.system_status()


@router.post("/refresh")
async def refresh(
    monitor: MonitorDep,
    force: Annotated[bool, Query()] = False,
) -> dict[str, Any]:
    """Trigger a manual refresh and return the resulting reading."""
    logger.info("Manual refresh requested (force=%s)", force)
    reading = await monitor.refresh(force=force)
    return {
        "reading": reading.model_dump(mode="json"),
        "connection_status": monitor.connection_status,
    }


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: run a monitor behind the API.

    Startup:
        - Loads and validates TankSettings, logs the config summary.
        - Opens a Monitor and starts the poll and history loops.

    Shutdown:
        - Stops the loops after their current iteration.
        - Closes the monitor, flushing pending usage.

    Apps built around an existing monitor skip both phases.
    """
    if getattr(app.state, "monitor", None) is not None:
        yield
        return

    settings = TankSettings()
    log_config_summary(settings)
    shutdown_event = asyncio.Event()

    async with Monitor.from_settings(settings) as monitor:
        app.state.monitor = monitor
        loops = asyncio.ensure_future(
            run_loops(
                monitor=monitor,
                poll_interval_s=settings.poll_interval_s,
                history_interval_s=settings.history_interval_s,
                shutdown_event=shutdown_event,
            )
        )
        logger.info("Tank monitor API ready")
        try:
            yield
        finally:
            logger.info("Tank monitor API shutting down")
            shutdown_event.set()
            await loops
            app.state.monitor = None


def create_app(monitor: Monitor | None = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        monitor: Monitor to serve.  ``None`` makes the app lifespan build
            one from the environment and run its loops.
    """
    app = FastAPI(
        title="Tank Monitor API",
        description="Water tank level, pump state and usage statistics.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.monitor = monitor
    app.include_router(health_router)
    app.include_router(router)
    return app


app = create_app()


def serve() -> None:
    """Console entrypoint: serve the API with its monitor under uvicorn."""
    configure_logging()
    settings = TankSettings()
    # log_config=None keeps the JSON root handler for uvicorn's loggers.
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)
