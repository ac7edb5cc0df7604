import os
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .routes.projects import router as projects_router
from .routes.tasks import router as tasks_router
from .services.errors import (
    AccessDenied,
    AggregationUnavailable,
    EntityNotFound,
    InvalidHierarchyError,
    ScopeResolutionFailure,
    TimelineUnavailable,
)


logger = structlog.get_logger(__name__)


def _error_handler(status_code: int, error: str):
    async def _handle(request: Request, exc: Exception):
        log = logger.warning if status_code < 500 else logger.error
        log("request_failed", path=request.url.path, error=error, detail=str(exc))
        return JSONResponse(status_code=status_code, content={"error": error, "detail": str(exc)})

    return _handle


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Failed reads get an explicit failure state, never an empty or zero result
    app.add_exception_handler(ScopeResolutionFailure, _error_handler(503, "scope_resolution_failure"))
    app.add_exception_handler(AggregationUnavailable, _error_handler(503, "aggregation_unavailable"))
    app.add_exception_handler(TimelineUnavailable, _error_handler(503, "timeline_unavailable"))
    app.add_exception_handler(InvalidHierarchyError, _error_handler(409, "invalid_hierarchy"))
    app.add_exception_handler(AccessDenied, _error_handler(403, "forbidden"))
    app.add_exception_handler(EntityNotFound, _error_handler(404, "not_found"))

    # Routers
    app.include_router(projects_router)
    app.include_router(tasks_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        logger.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
