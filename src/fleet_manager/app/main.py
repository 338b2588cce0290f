"""Fleet manager FastAPI application factory.

The create_app() factory is the single entry point for building the
fleet-manager ASGI application. It wires middleware (request-ID, metrics),
the session and event routers, background sweeps, and injects the document
store, provisioning client and location resolver via dependency injection.

Usage:
    # Local development
    from fleet_manager.app import create_app, FleetManagerSettings
    app = create_app(FleetManagerSettings())

    # Non-local (Supabase + Edgegap built from settings)
    settings = FleetManagerSettings.from_env()
    app = create_app(settings)

    # Testing (full DI control)
    app = create_app(settings, document_store=store, provisioning=fake, ...)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.responses import Response

from fleet_manager.observability.metrics import metrics_text
from fleet_manager.observability.middleware import MetricsMiddleware, RequestIdMiddleware

from .instances.callbacks import CallbackRegistry
from .instances.engine import LifecycleEngine
from .instances.errors import FleetError
from .instances.events import InstanceEventHandler
from .instances.store import InstanceStore
from .instances.sweeper import (
    ReservationExpirySweeper,
    TerminatedInstanceSweeper,
    run_periodically,
)
from .protocols import DocumentStore, LocationResolver, ProvisioningClient
from .routes.auth import error_response
from .routes.events import create_events_router
from .routes.sessions import create_sessions_router
from .settings import FleetManagerSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppDependencies:
    """Container for all injected adapter instances.

    Stored on ``app.state.deps`` so route handlers and tests can reach them.
    """

    document_store: DocumentStore
    provisioning: ProvisioningClient
    location_resolver: LocationResolver
    callbacks: CallbackRegistry


def _build_inmemory_deps() -> AppDependencies:
    """Construct all-InMemory dependencies for local development."""
    from .inmemory import (
        InMemoryDocumentStore,
        InMemoryLocationResolver,
        InMemoryProvisioningClient,
    )

    return AppDependencies(
        document_store=InMemoryDocumentStore(),
        provisioning=InMemoryProvisioningClient(),
        location_resolver=InMemoryLocationResolver(),
        callbacks=CallbackRegistry(),
    )


def _build_document_store(settings: FleetManagerSettings) -> DocumentStore:
    from .db import SupabaseClient, SupabaseDocumentStore

    client = SupabaseClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
    )
    return SupabaseDocumentStore(client)


def _build_provisioning(settings: FleetManagerSettings) -> ProvisioningClient:
    from .providers import EdgegapClient, EdgegapProvisioningClient

    client = EdgegapClient(
        api_token=settings.edgegap_api_token,
        base_url=settings.edgegap_api_url,
    )
    return EdgegapProvisioningClient(
        client,
        application=settings.edgegap_application,
        version=settings.edgegap_version,
        access_url=settings.access_url,
        http_key=settings.http_key,
    )


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: FleetManagerSettings | None = None,
    *,
    document_store: DocumentStore | None = None,
    provisioning: ProvisioningClient | None = None,
    location_resolver: LocationResolver | None = None,
    callbacks: CallbackRegistry | None = None,
) -> FastAPI:
    """Create a configured fleet-manager FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        document_store..callbacks: Adapter overrides. When None, local
            mode uses InMemory implementations and non-local mode builds
            the Supabase document store and Edgegap provisioning client
            from settings. The location resolver has no remote
            implementation; without one, placement falls back to the
            caller's address.

    Returns:
        Configured FastAPI application ready for uvicorn.run().

    Raises:
        ValueError: If settings validation fails (non-local without required config).
    """
    if settings is None:
        settings = FleetManagerSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Fleet manager settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    defaults = _build_inmemory_deps()
    verify_provisioning = False
    if not settings.is_local:
        if document_store is None:
            document_store = _build_document_store(settings)
        if provisioning is None:
            provisioning = _build_provisioning(settings)
            verify_provisioning = True

    deps = AppDependencies(
        document_store=defaults.document_store if document_store is None else document_store,
        provisioning=defaults.provisioning if provisioning is None else provisioning,
        location_resolver=(
            defaults.location_resolver if location_resolver is None else location_resolver
        ),
        callbacks=defaults.callbacks if callbacks is None else callbacks,
    )

    store = InstanceStore(deps.document_store)
    engine = LifecycleEngine(
        store,
        deps.provisioning,
        deps.callbacks,
        deps.location_resolver,
        port_name=settings.edgegap_port_name,
    )
    event_handler = InstanceEventHandler(engine)

    # Lifespan
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Fleet manager startup (environment=%s)", settings.environment)
        if verify_provisioning:
            await deps.provisioning.verify_application()

        tasks: list[asyncio.Task] = []
        if settings.background_sweeps:
            terminated = TerminatedInstanceSweeper(engine)
            expiry = ReservationExpirySweeper(store, max_age=settings.reservation_max_age)
            tasks.append(asyncio.create_task(
                run_periodically("terminated-instances", terminated.sweep, settings.polling_period),
            ))
            tasks.append(asyncio.create_task(
                run_periodically("reservation-expiry", expiry.sweep, settings.cleanup_period),
            ))
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Fleet manager shutdown")

    # Build app
    app = FastAPI(
        title="Fleet Manager",
        description="Dedicated game-server session and seat-reservation API",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store deps and settings on app state
    app.state.deps = deps
    app.state.settings = settings
    app.state.engine = engine
    app.state.event_handler = event_handler

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestId -> Metrics -> route handler
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(FleetError)
    async def fleet_error_handler(request: Request, exc: FleetError):
        request_id = getattr(request.state, "request_id", None)
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        return error_response(exc, request_id)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
            "pending_creates": len(deps.callbacks),
        }

    @app.get("/metrics")
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_sessions_router(engine, http_key=settings.http_key))
    app.include_router(create_events_router(event_handler, http_key=settings.http_key))

    return app


# For uvicorn, use --factory flag:
#   uvicorn fleet_manager.app.main:create_app --factory
# This avoids executing create_app() at import time.
