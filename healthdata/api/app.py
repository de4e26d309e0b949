"""
FastAPI application initialization and configuration.
"""

import time
from contextlib import asynccontextmanager
from typing import Callable, Optional
import structlog
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from healthdata import __version__
from healthdata.config import settings
from healthdata.observability import bind_request_context, clear_context
from healthdata.api.routes import router
from healthdata.resilience.errors import CircuitBreakerError, ClassifiedError, DataUnavailable
from healthdata.resilience.orchestrator import ResilienceOrchestrator, build_orchestrator

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup and shutdown.
    """
    logger.info(
        "application_starting",
        env=settings.env,
        debug=settings.debug,
        providers=app.state.orchestrator.registry.names,
    )

    yield

    logger.info("application_stopped")


async def classified_error_handler(request: Request, exc: ClassifiedError) -> JSONResponse:
    """Render a terminal classified error as a structured JSON body."""
    status_code = 503 if isinstance(exc, (CircuitBreakerError, DataUnavailable)) else 502
    logger.warning(
        "classified_error_response",
        request_id=getattr(request.state, "request_id", None),
        path=request.url.path,
        status_code=status_code,
        **exc.to_dict(),
    )
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


def create_app(orchestrator: Optional[ResilienceOrchestrator] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        orchestrator: Orchestrator to expose (built from settings if omitted)

    Returns:
        Configured FastAPI instance
    """
    app = FastAPI(
        title="Health Data Resilience",
        description="""
        Resilience layer for third-party health-data providers.

        ## Features

        - **Circuit Breakers**: One per provider (CDC, disease.sh, WHO, NHANES, HPV-IMPACT)
        - **Classified Retries**: Backoff chosen by error kind
        - **Fallback Chains**: Alternate provider, then cache, then placeholder data
        - **Operator Controls**: Reset circuits and error stats, tune retries at runtime
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator or build_orchestrator(settings)

    app.add_exception_handler(ClassifiedError, classified_error_handler)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next: Callable) -> Response:
        """Log all requests with timing."""
        start_time = time.time()

        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        bind_request_context(request_id, method=request.method, path=request.url.path)

        try:
            logger.info(
                "request_started",
                client=request.client.host if request.client else None,
            )

            try:
                response = await call_next(request)
            except Exception as e:
                logger.exception("request_error", error=str(e))
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": {
                            "message": "Internal server error",
                            "type": "internal_error",
                            "code": "internal_server_error",
                        }
                    }
                )

            duration_ms = (time.time() - start_time) * 1000

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            return response
        finally:
            clear_context()

    app.include_router(router)

    @app.get("/ping")
    async def ping():
        """Simple ping endpoint."""
        return {"status": "pong"}

    return app


# Create the application instance
app = create_app()
