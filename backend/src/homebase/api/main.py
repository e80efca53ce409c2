"""HomeBase referral API application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from homebase.api.rate_limit import limiter
from homebase.api.v1.accounts import router as accounts_router
from homebase.api.v1.billing import router as billing_router
from homebase.api.v1.payouts import router as payouts_router
from homebase.api.v1.referral import router as referral_router
from homebase.api.v1.webhooks import router as webhooks_router
from homebase.errors import FraudFlag, InvariantViolation, NotFound
from homebase.logging_config import configure_logging, get_logger
from homebase.settings import settings
from homebase.storage import db as storage

logger = get_logger(__name__)

API_VERSION = "1.0.0"
API_PREFIX = "/api/v1"

V1_ROUTERS = (accounts_router, billing_router, referral_router, payouts_router, webhooks_router)

# Domain error -> HTTP status
ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvariantViolation: status.HTTP_409_CONFLICT,
    FraudFlag: status.HTTP_409_CONFLICT,
    ValueError: status.HTTP_400_BAD_REQUEST,  # unknown tier, bad amounts
}

_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach fixed security headers to every API response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in _SECURITY_HEADERS.items():
            response.headers[name] = value
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("api_startup", env=settings.env, version=API_VERSION)
    storage.db.create_tables()
    yield
    logger.info("api_shutdown")


def _cors_origins(is_production: bool) -> list[str]:
    origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if is_production and "*" in origins:
        logger.error("cors_wildcard_rejected", allowed_origins=settings.allowed_origins)
        return []
    return origins


def _register_error_handlers(app: FastAPI) -> None:
    async def domain_error_handler(request: Request, exc: Exception):
        code = next(code for error, code in ERROR_STATUS.items() if isinstance(exc, error))
        log = logger.info if code == status.HTTP_404_NOT_FOUND else logger.warning
        log(
            "request_rejected",
            error_type=type(exc).__name__,
            error=str(exc),
            status_code=code,
            path=request.url.path,
        )
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    async def rate_limited_handler(request: Request, exc: RateLimitExceeded):
        logger.warning("rate_limited", path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Too many requests. Please try again later."},
        )

    for error in ERROR_STATUS:
        app.add_exception_handler(error, domain_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limited_handler)


def create_app() -> FastAPI:
    """Build the referral API.

    Docs are served outside production only. Domain errors are mapped to
    HTTP statuses through ``ERROR_STATUS``.
    """
    configure_logging()
    is_production = settings.env == "production"

    app = FastAPI(
        title="HomeBase Referral API",
        description="Referral credits, agent commissions and billing cycles",
        version=API_VERSION,
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(is_production),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Admin-Key"],
        max_age=3600,
    )

    app.state.limiter = limiter
    _register_error_handlers(app)

    for router in V1_ROUTERS:
        app.include_router(router, prefix=API_PREFIX)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": API_VERSION, "env": settings.env}

    return app


app = create_app()
