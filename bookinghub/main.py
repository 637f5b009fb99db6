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
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .db import Base, engine, SessionLocal
from .logging import setup_logging, RequestIdMiddleware
from .services import provisioning  # noqa: F401  registers flush hooks
from .services.errors import ServiceError
from .auth.router import router as auth_router
from .routes.users import router as users_router
from .routes.calendar import router as calendar_router
from .routes.talents import router as talents_router
from .routes.business_events import router as business_events_router
from .routes.files import router as files_router
from .routes.realtime import router as realtime_router


logger = structlog.get_logger(__name__)


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

    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    # Routers
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(calendar_router)
    app.include_router(talents_router)
    app.include_router(business_events_router)
    app.include_router(files_router)
    app.include_router(realtime_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("tables_created", tables=len(Base.metadata.tables))
        logger.info("startup_complete", environment=settings.environment)

    @app.get("/health")
    def health():
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            return {"status": "ok"}
        except SQLAlchemyError as e:
            logger.warning("health_db_failed", error=str(e))
            return JSONResponse(status_code=503, content={"status": "degraded"})
        finally:
            db.close()

    return app


app = create_app()
