"""Search service main application."""

import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from libs.common.config import SearchConfig
from libs.common.logging import configure_logging
from libs.common.metrics import MetricsCollector, get_metrics_collector
from .api.routes import router as api_router
from .hybrid.search_manager import SearchManager, create_search_manager

logger = structlog.get_logger("search_service")

SERVICE_NAME = "search-service"


def create_app(
    search_manager: Optional[SearchManager] = None,
    metrics_collector: Optional[MetricsCollector] = None,
) -> FastAPI:
    """Build the FastAPI application.

    A prebuilt ``search_manager`` is used as-is (tests); otherwise one is
    created from ``SearchConfig`` during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        config = SearchConfig()
        configure_logging(SERVICE_NAME, config.ds_log_level, config.ds_log_format)
        logger.info("Starting search service")

        app.state.metrics_collector = metrics_collector or get_metrics_collector(SERVICE_NAME)
        app.state.search_manager = search_manager or create_search_manager(
            config, metrics_collector=app.state.metrics_collector
        )
        await app.state.search_manager.initialize()

        logger.info("Search service started successfully")

        yield

        logger.info("Shutting down search service")
        await app.state.search_manager.cleanup()
        logger.info("Search service shutdown complete")

    app = FastAPI(
        title="Search Service",
        description="Hybrid semantic and keyword document search",
        version="0.1.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests."""
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path, error=str(e))
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content={"error": "Internal server error"}
            )

        duration = time.time() - start_time
        response.headers["X-Process-Time"] = str(duration)

        if hasattr(app.state, 'metrics_collector'):
            app.state.metrics_collector.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status=status_code,
                duration=duration
            )

        return response

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        healthy = False
        if hasattr(app.state, 'search_manager'):
            healthy = await app.state.search_manager.health_check()

        if healthy:
            return {"status": "healthy", "service": SERVICE_NAME}
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": SERVICE_NAME}
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        if hasattr(app.state, 'metrics_collector'):
            metrics_data = app.state.metrics_collector.get_metrics()
            return Response(content=metrics_data, media_type="text/plain")
        return Response(content="# No metrics available\n", media_type="text/plain")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "search": "/api/v1/search",
                "search_metrics": "/api/v1/search/metrics",
                "popular": "/api/v1/search/popular",
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    config = SearchConfig()
    uvicorn.run(
        "service_search.app.main:app",
        host="0.0.0.0",
        port=config.ds_search_port,
        log_level=config.ds_log_level.lower()
    )
