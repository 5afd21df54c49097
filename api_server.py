"""
FastAPI server for VEO3 Studio
Serves the REST/SSE API and generated media
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from config.config import (
    validate_config,
    ENVIRONMENT,
    WEBAPP_URL,
    EXTRA_CORS_ORIGINS,
    MEDIA_ROOT,
    MEDIA_BASE_URL,
)
from config.logging import setup_logging
from config.sentry import init_sentry
from src.core.exceptions import (
    NoCapacityError,
    QuotaExceededError,
    ToolUnavailableError,
    InvalidTransitionError,
    InsufficientCreditsError,
    InsufficientBalanceError,
    WithdrawalStateError,
)
from src.database.engine import dispose_engine
from src.api.rate_limit import limiter
from src.api.router import router as api_router
from src.tasks.generation_scheduler import generation_scheduler

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()
init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events
    """
    # Startup
    logger.info("Starting VEO3 Studio API Server...")

    # NOTE: Database tables managed by Alembic migrations
    # Run: alembic upgrade head

    # Server-side polling, auto-retry and plan expiry
    generation_scheduler.start()
    logger.info("Generation scheduler started (poll/auto-retry/plan expiry)")

    yield

    # Shutdown
    logger.info("Shutting down VEO3 Studio API Server...")

    generation_scheduler.stop()
    logger.info("Generation scheduler stopped")

    await dispose_engine()
    logger.info("Database connections closed")


app = FastAPI(
    title="VEO3 Studio API",
    description="Video, image and voice generation with plans, quotas and ledgers",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiter: per IP, global limit on every endpoint, stricter on logins
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


# CORS: exact origins only, cookies allowed
allowed_origins = [
    "http://localhost:5000",
    "http://127.0.0.1:5000",
]
if WEBAPP_URL and WEBAPP_URL not in allowed_origins:
    allowed_origins.append(WEBAPP_URL)
for origin in EXTRA_CORS_ORIGINS:
    if origin not in allowed_origins:
        allowed_origins.append(origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """
    Add security headers to all responses

    Headers:
    - X-Content-Type-Options: block MIME sniffing
    - X-Frame-Options: clickjacking protection
    - Referrer-Policy: limit referrer leakage
    - Permissions-Policy: disable unused browser features
    - Strict-Transport-Security: production HTTPS only
    """
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = (
        "geolocation=(), "
        "microphone=(), "
        "camera=(), "
        "payment=(), "
        "usb=()"
    )

    if ENVIRONMENT == "production" and request.url.scheme == "https":
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains; preload"
        )

    return response


# All API endpoints under /api
app.include_router(api_router, prefix="/api")

# Generated media (videos, images, audio, uploads)
MEDIA_ROOT.mkdir(parents=True, exist_ok=True)
app.mount(MEDIA_BASE_URL, StaticFiles(directory=MEDIA_ROOT), name="media")


@app.get("/")
async def root():
    return {
        "service": "VEO3 Studio API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


# ===========================
# DOMAIN ERRORS → HTTP
# ===========================


@app.exception_handler(QuotaExceededError)
async def quota_exceeded_handler(request: Request, exc: QuotaExceededError):
    logger.warning(f"Quota denied on {request.url.path}: {exc.reason}")
    return JSONResponse(
        status_code=429,
        content={"detail": exc.reason, "used": exc.used, "limit": exc.limit},
    )


@app.exception_handler(ToolUnavailableError)
async def tool_unavailable_handler(request: Request, exc: ToolUnavailableError):
    status_code = 503 if exc.maintenance else 403
    logger.warning(f"Tool {exc.tool} unavailable ({status_code}): {exc.reason}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.reason, "tool": exc.tool, "maintenance": exc.maintenance},
    )


@app.exception_handler(NoCapacityError)
async def no_capacity_handler(request: Request, exc: NoCapacityError):
    logger.error(f"Token pool '{exc.pool}' exhausted on {request.url.path}")
    return JSONResponse(status_code=503, content={"detail": str(exc), "pool": exc.pool})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    logger.warning(str(exc))
    return JSONResponse(status_code=409, content={"detail": "This item is still being processed"})


@app.exception_handler(WithdrawalStateError)
async def withdrawal_state_handler(request: Request, exc: WithdrawalStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(InsufficientCreditsError)
async def insufficient_credits_handler(request: Request, exc: InsufficientCreditsError):
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "balance": exc.balance, "required": exc.required},
    )


@app.exception_handler(InsufficientBalanceError)
async def insufficient_balance_handler(request: Request, exc: InsufficientBalanceError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Error handler for HTTPException (must be before generic Exception handler)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Handle HTTPException properly - return correct status code and detail
    """
    # Log 4xx as warning, 5xx as error
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}")

    content = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


# Error handler for unexpected exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unexpected errors
    """
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "detail": "An error occurred",
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Raises ValueError listing every problem
    validate_config()
    logger.info("Configuration validated successfully")

    # Listen on localhost only; public access goes through nginx
    uvicorn.run(
        "api_server:app",
        host="127.0.0.1",
        port=8003,
        reload=ENVIRONMENT == "development",
        log_level="info",
    )
