"""
FastAPI server for the escrow marketplace
Hosts the REST API, the Paystack and KYC webhooks, and the background scheduler
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import Config
from database import build_session_factory, create_db_engine, create_tables, get_pool_stats, test_connection
from handlers.admin_routes import router as admin_router
from handlers.dependencies import ServiceContainer
from handlers.dispute_routes import router as dispute_router
from handlers.escrow_routes import router as escrow_router
from handlers.kyc_webhook import router as kyc_webhook_router
from handlers.listing_routes import router as listing_router
from handlers.notification_routes import router as notification_router
from handlers.paystack_webhook import router as paystack_webhook_router
from handlers.user_routes import router as user_router
from handlers.wallet_routes import router as wallet_router
from jobs.scheduler import EscrowScheduler
from utils.background_task_runner import run_io_task
from utils.exception_handler import EscrowPlatformError

logger = logging.getLogger(__name__)


def _build_services() -> ServiceContainer:
    Config.validate()
    Config.log_environment_config()
    engine = create_db_engine()
    create_tables(engine)
    return ServiceContainer(build_session_factory(engine))


def create_app(services: Optional[ServiceContainer] = None, start_scheduler: bool = True) -> FastAPI:
    """Build the application; tests pass a ready container and skip the scheduler"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🔧 Worker {os.getpid()} starting...")
        if getattr(app.state, "services", None) is None:
            app.state.services = await run_io_task(_build_services)
        await run_io_task(app.state.services.bootstrap)

        scheduler = None
        if start_scheduler:
            scheduler = EscrowScheduler(app.state.services.auto_release, app.state.services.balance_audit)
            scheduler.start()
        logger.info(f"✅ Worker {os.getpid()} ready")

        yield

        if scheduler is not None:
            scheduler.shutdown()
        logger.info(f"🔄 Worker {os.getpid()} shutting down...")

    app = FastAPI(
        title="Escrow Marketplace",
        description="Escrow-backed marketplace for game accounts",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(EscrowPlatformError)
    async def escrow_error_handler(request: Request, exc: EscrowPlatformError):
        if exc.status_code >= 500:
            logger.error(f"❌ {request.method} {request.url.path}: {exc.code} {exc.message}")
        else:
            logger.info(f"↩️ {request.method} {request.url.path}: {exc.code} {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health_check():
        container = app.state.services
        if container is None:
            return JSONResponse(content={"status": "starting", "ready": False}, status_code=503)

        engine = container.session_factory.kw["bind"]
        database_ok = await run_io_task(test_connection, engine)
        return JSONResponse(
            content={
                "status": "healthy" if database_ok else "degraded",
                "ready": database_ok,
                "database": "connected" if database_ok else "unavailable",
                "pool": get_pool_stats(engine),
                "paystack": container.paystack.is_available(),
            },
            status_code=200 if database_ok else 503,
        )

    for router in (
        user_router,
        listing_router,
        escrow_router,
        dispute_router,
        wallet_router,
        notification_router,
        admin_router,
        paystack_webhook_router,
        kyc_webhook_router,
    ):
        app.include_router(router)

    return app


app = create_app()
