from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
import time
import logging
import redis

from .api.v1.auth import router as auth_router
from .api.v1.doctors import router as doctors_router
from .api.v1.appointments import router as appointments_router
from .api.v1.doctor import router as doctor_router
from .api.v1.admin import router as admin_router
from .core.config import Settings, get_settings
from .core.database import Database
from .core.edge_filter import SECURITY_HEADERS, EdgeAuthorizationFilter, EdgeAuthorizationMiddleware
from .core.exceptions import DomainError
from .core.security import Clock, TokenService, utcnow

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
ROUTERS = (auth_router, doctors_router, appointments_router, doctor_router, admin_router)


async def log_requests(request: Request, call_next):
    """Time every request and log one line per response."""
    started = time.time()
    response = await call_next(request)
    elapsed = time.time() - started
    response.headers["X-Process-Time"] = str(elapsed)

    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {elapsed:.4f}s"
    )
    return response


async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def not_found_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": getattr(exc, "detail", None) or "The requested resource was not found",
            "path": str(request.url.path)
        }
    )


async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred"
        },
        headers=SECURITY_HEADERS
    )


def _install_middleware(app: FastAPI, settings: Settings, tokens: TokenService) -> None:
    # Last added runs first: timing wraps everything, the edge filter sits innermost
    app.add_middleware(
        EdgeAuthorizationMiddleware,
        edge_filter=EdgeAuthorizationFilter(tokens),
        cookie_name=settings.TOKEN_COOKIE_NAME,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)
    app.middleware("http")(log_requests)


def _install_routes(app: FastAPI, settings: Settings, database: Database) -> None:
    for router in ROUTERS:
        app.include_router(router, prefix=API_PREFIX)

    endpoints = {
        "authentication": f"{API_PREFIX}/auth",
        "doctors": f"{API_PREFIX}/doctors",
        "appointments": f"{API_PREFIX}/appointments",
        "doctor_schedule": f"{API_PREFIX}/doctor/appointments",
        "admin": f"{API_PREFIX}/admin",
        "openapi": f"{API_PREFIX}/openapi.json",
    }

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "database": database.backend,
            "version": settings.VERSION,
            "timestamp": time.time(),
        }

    @app.get("/")
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    @app.get(f"{API_PREFIX}/info")
    async def api_info():
        """Public map of the API surface."""
        return {
            "name": settings.APP_NAME,
            "version": settings.VERSION,
            "slot_grid": settings.SLOT_GRID,
            "endpoints": endpoints,
        }


def create_app(settings: Optional[Settings] = None, clock: Clock = utcnow) -> FastAPI:
    """Build the application.

    Configuration problems (such as a missing signing key) raise here,
    before the server accepts any request.
    """
    settings = settings or get_settings()

    logging.basicConfig(level=settings.LOG_LEVEL)

    tokens = TokenService(
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        expire_days=settings.TOKEN_EXPIRE_DAYS,
        clock=clock,
    )
    database = Database(settings.get_database_url, echo=settings.DEBUG)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the store on startup and release it on shutdown."""
        logger.info(f"Starting {settings.APP_NAME} on the {database.backend} store")
        try:
            database.create_all()
        except Exception as e:
            logger.error(f"Could not prepare the {database.backend} schema: {e}")
            raise
        logger.info("Schema ready, accepting requests")

        yield

        logger.info(f"Stopping {settings.APP_NAME}")
        app.state.redis.close()
        database.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        description="Appointment scheduling and access control for the patient/provider platform",
        openapi_url=f"{API_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.tokens = tokens
    app.state.database = database
    app.state.redis = redis.from_url(settings.REDIS_URL, decode_responses=True)

    _install_middleware(app, settings, tokens)

    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(404, not_found_handler)
    app.add_exception_handler(500, internal_error_handler)

    _install_routes(app, settings, database)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("carelink.main:create_app", factory=True, host="0.0.0.0", port=8000)
