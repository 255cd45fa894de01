from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from opsqueue.config.logging import setup_logging
from opsqueue.config.settings import settings
from opsqueue.v1.core.exceptions import (
    OpsQueueException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    opsqueue_exception_handler,
)
from opsqueue.v1.healthz import router as health_router
from opsqueue.v1.infra.activity.routes import router as activity_router
from opsqueue.v1.infra.jobs.routes import router as jobs_router
from opsqueue.v1.infra.jobs.routes import worker_router
from opsqueue.v1.infra.runs.routes import router as runs_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    # Initialize structured logging
    setup_logging()

    app = FastAPI(
        title=settings.app_name,
        description="Persisted priority job queue with trigger-driven dispatch",
        version=settings.version,
        debug=settings.debug,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(OpsQueueException, opsqueue_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(worker_router, prefix="/v1")
    app.include_router(runs_router, prefix="/v1")
    app.include_router(activity_router, prefix="/v1")

    # The job registry is built lazily on first dispatch; see get_job_registry
    app.state.job_registry = None

    return app


# Create the app instance
app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "opsqueue.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )


if __name__ == "__main__":
    main()
