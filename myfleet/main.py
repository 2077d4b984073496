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
from .routes.tasks import router as tasks_router
from .routes.reports import router as reports_router
from .routes.analytics import router as analytics_router
from .routes.timeoff import router as timeoff_router
from .routes.vehicles import router as vehicles_router
from .routes.deductions import router as deductions_router
from .routes.notifications import router as notifications_router
from .services import audit, notifications
from .services.errors import DomainError
from .services.events import bus


logger = structlog.get_logger(__name__)


async def domain_error_handler(request: Request, exc: DomainError):
    logger.info(
        "domain_error",
        error=exc.code,
        detail=exc.message,
        method=request.method,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})


def register_subscribers() -> None:
    audit.register(bus)
    notifications.register(bus)


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

    app.add_exception_handler(DomainError, domain_error_handler)

    # Routers
    app.include_router(tasks_router)
    app.include_router(reports_router)
    app.include_router(analytics_router)
    app.include_router(timeoff_router)
    app.include_router(vehicles_router)
    app.include_router(deductions_router)
    app.include_router(notifications_router)

    register_subscribers()

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("database_ready", tables=len(Base.metadata.tables))

    return app


app = create_app()
