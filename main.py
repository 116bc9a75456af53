import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config import Settings, get_settings
from database import Database
from exceptions import AnalyticsError, StorageFailure
from logging_config import log_request, setup_logging
from routers import stats, tracking, visitors
from services.classifiers import GeoClassifier, UserAgentClassifier, build_geo_classifier
from utils import utcnow
import schemas

logger = logging.getLogger("app.errors")

SERVICE_NAME = "Cloud Dept. Analytics API"
VERSION = "1.0.0"


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    geo_classifier: Optional[GeoClassifier] = None,
    ua_classifier: Optional[UserAgentClassifier] = None,
    clock: Optional[Callable] = None
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state = app.state
        if getattr(state, "database", None) is None:
            state.database = Database(settings.database_url)
        if getattr(state, "geo_classifier", None) is None:
            state.geo_classifier = build_geo_classifier(settings)
        state.database.create_all()
        logging.getLogger("app").info("🚀 %s started (database: %s)", SERVICE_NAME, state.database.engine.url)
        yield
        state.geo_classifier.close()
        state.database.dispose()

    app = FastAPI(title=SERVICE_NAME, version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.geo_classifier = geo_classifier
    app.state.ua_classifier = ua_classifier or UserAgentClassifier()
    app.state.clock = clock or utcnow

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        log_request(request.method, request.url.path, response.status_code, started)
        return response

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(request: Request, exc: AnalyticsError):
        if isinstance(exc, StorageFailure):
            return _server_error_response(settings, exc)
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
        return _server_error_response(settings, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"success": False, "error": _describe_validation_error(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return _server_error_response(settings, exc)

    # Include routers
    app.include_router(tracking.router, prefix="/api", tags=["Tracking"])
    app.include_router(stats.router, prefix="/api", tags=["Stats"])
    app.include_router(visitors.router, prefix="/api", tags=["Visitors"])

    @app.get("/")
    def root():
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "endpoints": {
                "health": "/api/health",
                "track": "/api/track",
                "stats": "/api/stats",
                "enhancedStats": "/api/stats/enhanced",
                "visitors": "/api/visitors",
                "realtime": "/api/realtime"
            },
            "status": "online"
        }

    @app.get("/api/health", response_model=schemas.HealthResponse)
    def health_check():
        return {"status": "ok", "timestamp": app.state.clock()}

    return app


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if isinstance(part, str) and part != "body")
    message = first.get("msg", "invalid value")
    return f"Invalid request: {location}: {message}" if location else f"Invalid request: {message}"


def _server_error_response(settings: Settings, exc: Exception) -> JSONResponse:
    content = {"success": False, "error": "Internal server error"}
    if not settings.is_production:
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


app = create_app()
