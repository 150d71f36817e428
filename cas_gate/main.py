"""
cas-gate main application.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
import uvicorn

from cas_gate import __version__
from cas_gate.core.config import (
    Settings, create_gate_config, create_logout_store, create_session_store,
    load_merged_config
)
from cas_gate.core.dependencies import initialize_gate, is_gate_initialized
from cas_gate.core.gate import AuthGate
from cas_gate.core.middleware import CasGateMiddleware
from cas_gate.api.v1.callbacks import register_proxy_callback
from cas_gate.api.v1.session import router as session_router
from cas_gate.adapters.impl.cas_validator import CasReceiptValidator
from cas_gate.observability.logging import setup_logging
from cas_gate.observability.metrics import get_metrics_collector
from cas_gate.observability.tracing import setup_tracing

logger = logging.getLogger(__name__)


def build_gate(settings: Settings) -> AuthGate:
    """
    Build the gate and its adapters from settings.

    Raises:
        ConfigurationError: If the settings describe an invalid gate
    """
    config = create_gate_config(settings)
    return AuthGate(
        config=config,
        logout_store=create_logout_store(settings),
        session_store=create_session_store(settings),
        validator=CasReceiptValidator(
            config.validate_url,
            timeout=settings.validator_timeout_seconds
        )
    )


def create_app(settings: Optional[Settings] = None, gate: Optional[AuthGate] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Application settings, loaded from env and config files if omitted
        gate: Prebuilt gate; built from settings at startup if omitted

    Returns:
        FastAPI application
    """
    settings = settings or load_merged_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        setup_logging(settings.log_level, settings.log_format)

        # Startup
        active_gate = gate or build_gate(settings)
        initialize_gate(active_gate)

        config = active_gate.config
        logger.info(f"cas-gate {__version__} started")
        logger.info(f"Validating tickets against: {config.validate_url}")
        logger.info(f"Using logout store: {settings.logout_store}")
        logger.info(f"Using session store: {settings.session_store}")

        yield

        # Shutdown
        initialize_gate(None)
        await active_gate.close()
        logger.info("cas-gate shutdown complete")

    app = FastAPI(
        title="cas-gate",
        description="CAS single sign-on authentication gate",
        version=__version__,
        lifespan=lifespan
    )

    app.add_middleware(
        CasGateMiddleware,
        gate=gate,
        cookie_name=settings.session_cookie_name
    )

    if settings.enable_tracing:
        setup_tracing(app)

    # Include API routers
    app.include_router(session_router, prefix="/api/v1")
    if settings.proxy_callback_url:
        register_proxy_callback(app, settings.proxy_callback_url)

    # Health check endpoints
    @app.get("/", tags=["Health"])
    def read_root():
        """Root endpoint providing service info."""
        return {
            "service": "cas-gate",
            "version": __version__,
            "status": "running"
        }

    @app.get("/health", tags=["Health"])
    @app.get("/healthz", tags=["Health"])
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/readyz", tags=["Health"])
    def readiness_check():
        """Readiness check endpoint."""
        if not is_gate_initialized():
            return JSONResponse(status_code=503, content={"status": "not ready"})
        return {"status": "ready"}

    @app.get("/metrics", tags=["Observability"])
    def metrics():
        """Prometheus metrics endpoint."""
        if not settings.enable_metrics:
            return JSONResponse(status_code=404, content={"detail": "Metrics are disabled"})
        collector = get_metrics_collector()
        return Response(content=collector.get_metrics(), media_type=collector.content_type)

    return app


def run_server(settings: Settings, reload: bool = False) -> None:
    """Run the application under uvicorn."""
    if reload:
        uvicorn.run(
            "cas_gate.main:create_app",
            factory=True,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
            reload=True
        )
    else:
        uvicorn.run(
            create_app(settings),
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower()
        )


def main():
    """Main entry point for the application."""
    import argparse

    parser = argparse.ArgumentParser(description="cas-gate CAS authentication gate")
    parser.add_argument("--host", help="Host to bind to")
    parser.add_argument("--port", type=int, help="Port to bind to")
    parser.add_argument("--config", help="Config file path")
    parser.add_argument("--log-level", help="Log level")

    args = parser.parse_args()

    # Override settings with CLI args
    settings = load_merged_config(args.config)
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    if args.log_level:
        settings.log_level = args.log_level

    run_server(settings)


if __name__ == "__main__":
    main()
