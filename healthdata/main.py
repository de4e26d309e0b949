"""
Application entry point.
Run with: python -m healthdata.main or uvicorn healthdata.api.app:app
"""

import argparse

import uvicorn

from healthdata.config import settings
from healthdata.observability import configure_logging, get_logger

logger = get_logger(__name__)


def run_server(
    host: str = "0.0.0.0",
    port: int = 8000,
    reload: bool = False,
    log_level: str = "info"
) -> None:
    """
    Run the FastAPI server with Uvicorn.

    Circuit breaker state is process-local, so the server always runs a
    single worker.

    Args:
        host: Host to bind to
        port: Port to bind to
        reload: Enable auto-reload for development
        log_level: Uvicorn log level
    """
    logger.info(
        "starting_server",
        host=host,
        port=port,
        reload=reload,
    )

    uvicorn.run(
        "healthdata.api.app:app",
        host=host,
        port=port,
        reload=reload,
        workers=1,
        log_level=log_level,
    )


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Health Data Resilience")
    parser.add_argument(
        "--host",
        default=settings.api_host,
        help="Host to bind to"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.api_port,
        help="Port to bind to"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development"
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level.lower(),
        choices=["debug", "info", "warning", "error"],
        help="Log level"
    )

    args = parser.parse_args()

    configure_logging(level=args.log_level.upper())

    logger.info(
        "health_data_resilience_starting",
        environment=settings.env,
        debug=settings.debug,
        providers=settings.providers,
    )

    run_server(
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
