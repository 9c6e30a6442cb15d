import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import cleanup_expired_magic_links
from .config import Settings
from .db import build_engine, build_session_factory, init_db
from .errors import TaskboardError
from .routes import auth_router, router
from .schemas import ErrorEnvelope, Health
from .storage import Storage
from .utils import configure_logging

logger = logging.getLogger(__name__)


def error_response(request: Request, status_code: int, message: str, **extra) -> JSONResponse:
    body = ErrorEnvelope(error=message, statusCode=status_code, path=request.url.path, **extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body, exclude_none=True))


def register_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(TaskboardError)
    async def taskboard_error(request: Request, exc: TaskboardError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
            if settings.is_production:
                return error_response(request, exc.status_code, "Something went wrong")
        return error_response(request, exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err["loc"][1:]) or "unknown", "message": err["msg"]}
            for err in exc.errors()
        ]
        return error_response(request, 400, "Validation failed", validationErrors=errors)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return error_response(request, 404, f"Route {request.url.path} not found")
        return error_response(request, exc.status_code, str(exc.detail))

    @app.exception_handler(IntegrityError)
    async def integrity_error(request: Request, exc: IntegrityError):
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
        return error_response(request, 409, "A record with this data already exists")

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        if settings.is_production:
            return error_response(request, 500, "Something went wrong")
        return error_response(request, 500, "Internal Server Error", details={"name": type(exc).__name__})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.LOG_LEVEL)

    engine = build_engine(settings.DATABASE_URL)
    session_factory = build_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        session = session_factory()
        try:
            cleanup_expired_magic_links(Storage(session))
        finally:
            session.close()
        logger.info("%s %s started (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
        yield
        engine.dispose()
        logger.info("Shut down gracefully")

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = (time.perf_counter() - started) * 1000
        client = request.client.host if request.client else "-"
        logger.info(
            "%s %s %s - %s - %.1fms", request.method, request.url.path, response.status_code, client, elapsed
        )
        return response

    @app.get("/health", response_model=Health)
    def health() -> Health:
        return Health(environment=settings.ENVIRONMENT)

    register_error_handlers(app, settings)
    app.include_router(auth_router)
    app.include_router(router)
    return app
