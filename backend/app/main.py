"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.archive.routes import router as archive_router
from app.auth.routes import router as auth_router
from app.config import Settings, get_settings
from app.container import Services, build_services
from app.db.session import init_db
from app.errors import GorzError
from app.files.routes import router as files_router
from app.folders.routes import router as folders_router
from app.limiter import limiter
from app.tokens.routes import router as tokens_router

log = logging.getLogger(__name__)


def _setup_logging(settings: Settings) -> None:
    """Configure logging from settings (stderr always; optional file)."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("app")
    root.setLevel(level)
    root.handlers.clear()
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root.addHandler(sh)
    if settings.log_file and str(settings.log_file).strip():
        try:
            fh = logging.FileHandler(settings.log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            root.info("Logging to file %s", settings.log_file)
        except OSError as e:
            root.warning("Could not open log file %s: %s", settings.log_file, e)
    else:
        root.debug("Logging to stderr only (no log_file set)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; dispose the engine on shutdown."""
    services: Services = app.state.services
    if services.engine is not None:
        log.info("Startup: initializing database at %s", services.settings.db_path)
        await init_db(services.engine)
    log.info("Startup complete")
    yield
    if services.engine is not None:
        await services.engine.dispose()
    log.info("Shutdown")


async def gorz_error_handler(request: Request, exc: GorzError) -> JSONResponse:
    """Domain errors carry their own status; 5xx are logged with the cause."""
    if exc.status_code >= 500:
        log.error("%s %s failed: %s (cause: %s)", request.method, request.url.path, exc.detail, exc.__cause__)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Return generic 500 without leaking stack trace or internals."""
    if isinstance(exc, HTTPException):
        raise exc
    log.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the app. Tests pass their own services (memory stores)."""
    settings = settings or (services.settings if services else get_settings())
    _setup_logging(settings)
    services = services or build_services(settings)

    app = FastAPI(title="Gorz Storage API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    app.add_exception_handler(GorzError, gorz_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.include_router(auth_router)
    app.include_router(tokens_router)
    app.include_router(folders_router)
    app.include_router(files_router)
    app.include_router(archive_router)

    @app.get("/health")
    @limiter.exempt
    def health() -> JSONResponse:
        """Health check for Docker and tunnel. Exempt from rate limiting."""
        return JSONResponse(content={"status": "ok"})

    return app


app = create_app()
