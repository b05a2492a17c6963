"""FlexHunt Backend API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__, database
from .config import get_settings
from .cors import AllowListCORSMiddleware, OriginAllowList, cors_headers
from .database import get_supabase_client
from .errors import CheckoutError, InvalidRequest
from .logging_config import configure_logging, get_logger
from .payments import close_paypal_client
from .rate_limit import limiter
from .routes import assessments_router, payments_router

logger = get_logger("flexhunt.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    logger.info(f"Starting FlexHunt Backend API (debug={settings.debug})")
    logger.info(f"Allowed origins: {', '.join(settings.cors_origins)}")
    yield
    # Shutdown
    await close_paypal_client()
    logger.info("Shutting down FlexHunt Backend API")


app = FastAPI(
    title="FlexHunt Backend API",
    description="Checkout, escrow and assessment API for the FlexHunt marketplace",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors()]
    err = InvalidRequest("Invalid request body", fields=[f for f in fields if f])
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error | {request.method} {request.url.path}")
    message = str(exc) if get_settings().debug else "Internal server error"
    body = CheckoutError(message).to_dict()
    body["error"] = "InternalError"
    # Sent by ServerErrorMiddleware, outside the CORS middleware
    origin = request.headers.get("origin")
    headers = cors_headers(origin) if origin and allow_list.is_allowed(origin) else None
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body, headers=headers)


# CORS middleware
settings = get_settings()
allow_list = OriginAllowList(settings.cors_origins)
app.add_middleware(
    AllowListCORSMiddleware,
    allow_list=allow_list,
    debug=settings.debug,
)

# Include routers
app.include_router(payments_router)
app.include_router(assessments_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "flexhunt-backend",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Detailed health check with actual database verification."""
    db_status = "disconnected"
    try:
        await database.ping(get_supabase_client())
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check database ping failed: {e}")
        db_status = f"error: {str(e)[:50]}"

    overall_status = "healthy" if db_status == "connected" else "degraded"

    return {
        "status": overall_status,
        "database": db_status,
    }
