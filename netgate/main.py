"""
FastAPI application factory.

Assembles the app, builds the storage handle, firewall driver and
access coordinator once, registers all routers, and maps every
``AccessError`` to a JSON response.  Database schema is managed by
Alembic — NOT create_all.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from netgate.controllers.admin_controller import router as admin_router
from netgate.controllers.auth_controller import router as auth_router
from netgate.controllers.device_controller import router as device_router
from netgate.core.config import Settings, get_settings
from netgate.core.database import Database
from netgate.core.errors import AccessError, FirewallError, TokenError
from netgate.firewall import FirewallDriver, build_firewall
from netgate.services.access_coordinator import AccessCoordinator

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    firewall: FirewallDriver | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    database = database or Database.from_settings(settings)
    firewall = firewall or build_firewall(settings)
    app.state.settings = settings
    app.state.database = database
    app.state.firewall = firewall
    app.state.coordinator = AccessCoordinator.build(settings, database, firewall)

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(auth_router)
    app.include_router(device_router)
    app.include_router(admin_router)

    # ── Error mapping ────────────────────────────────────────────────
    @app.exception_handler(AccessError)
    async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, TokenError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code, **exc.extra},
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "code": "INTERNAL_ERROR"},
        )

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        """Install the firewall base policy and restore grants for active devices.

        NOTE: Database schema is managed by Alembic migrations.
        Run `alembic upgrade head` before starting the app.
        """
        if not settings.FIREWALL_INIT_ON_STARTUP:
            return
        try:
            report = await app.state.coordinator.initialize_network()
        except FirewallError:
            logger.exception("Firewall initialization failed; continuing without enforcement")
        else:
            logger.info(
                "Network initialized: %d devices re-granted, %d failed",
                report.regranted, len(report.failed),
            )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await database.dispose()
        logger.info("Database engine disposed.")

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "firewall": firewall.name}

    return app
