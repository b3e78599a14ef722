"""
HR-SM License Guard application.
License validation gateway, module license dependencies and the attack pattern
analysis platform API on one FastAPI app.
"""
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from config import Settings, settings as default_settings
from middleware.error_handling import register_exception_handlers
from middleware.license_validation import LicenseValidationMiddleware
from monitoring.logger import configure_logging
from routers import security_analysis
from services.container import ServiceContainer

logger = logging.getLogger(__name__)


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background maintenance on startup, release clients on shutdown."""
    container: ServiceContainer = app.state.container
    logger.info("🚀 [STARTUP] Beginning application startup...")

    await container.scheduler.start()
    logger.info("✅ [STARTUP] License guard ready")

    yield

    logger.info("👋 [SHUTDOWN] Beginning graceful shutdown...")
    try:
        await container.close()
        logger.info("✅ [SHUTDOWN] Services closed")
    except Exception as e:
        logger.warning(f"⚠️ [SHUTDOWN] Cleanup error: {e}")


# =============================================================================
# CREATE FASTAPI APP
# =============================================================================

def create_app(settings: Optional[Settings] = None,
               container: Optional[ServiceContainer] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.log_level, settings.log_json)

    container = container or ServiceContainer.build(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="HR-SM License Guard API",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production() else None,
        redoc_url=None,
    )
    app.state.container = container

    app.add_middleware(LicenseValidationMiddleware, skip_paths=settings.license_skip_paths)
    register_exception_handlers(app)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"❌ Unhandled exception on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "INTERNAL_ERROR", "message": "Internal server error"},
        )

    @app.get("/health")
    async def health():
        """Simple health check - must always work."""
        return {"status": "healthy", "timestamp": time.time()}

    @app.get("/metrics")
    async def metrics():
        return Response(
            content=container.metrics.get_metrics_output(),
            media_type=container.metrics.get_metrics_content_type(),
        )

    app.include_router(security_analysis.router)

    logger.info(f"🚀 {settings.app_name} v{settings.app_version} configured ({settings.environment})")
    return app


app = create_app()


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
