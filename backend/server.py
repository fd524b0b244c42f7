from fastapi import FastAPI, APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import asyncio
import time
import logging
from pathlib import Path
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
import traceback

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Import configuration
from config import get_settings, get_cors_config, validate_environment

# Import logging and error tracking
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from sentry_integration import init_sentry, capture_exception, set_tag

# Import database, resilience stack and routers
from database import init_db, check_db, dispose_engine, get_session_factory
from middleware.rate_limit import enforce_api_rate_limit, get_client_ip
from resilience import (
    CircuitBreakerRegistry,
    SlidingWindowRateLimiter,
    ResilientCallExecutor,
    ResilientHttpClient,
    RetryConfig,
    per_attempt_timeout,
    run_periodic_sweep,
)
from webhooks import (
    WebhookDispatcher,
    InMemoryIdempotencyStore,
    SqlIdempotencyStore,
    build_default_consumers,
)
from reconciliation import SourceRegistry, ReconciliationService, reconciliation_router
from routers import webhooks_router, resilience_router
from utils.error_handlers import register_error_handlers

# Get settings
settings = get_settings()

# Configure structured logging
# Use JSON format in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="ledger-core"
)
logger = get_logger(__name__)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )
    set_tag("service", "ledger-core")


def database_configured() -> bool:
    try:
        return bool(settings.get_database_url())
    except ValueError:
        return False


def build_services(app: FastAPI):
    """
    Construct the process-wide service objects once and hang them on app.state.

    Breakers and limiters are shared by every request handled by this process.
    """
    app.state.breakers = CircuitBreakerRegistry.from_settings(settings)
    app.state.api_limiter = SlidingWindowRateLimiter(
        settings.API_RATE_LIMIT, settings.API_RATE_WINDOW_SECONDS, name="api"
    )
    app.state.webhook_limiter = SlidingWindowRateLimiter(
        settings.WEBHOOK_RATE_LIMIT, settings.API_RATE_WINDOW_SECONDS, name="webhook"
    )
    app.state.integration_limiter = SlidingWindowRateLimiter(
        settings.INTEGRATION_RATE_LIMIT, settings.API_RATE_WINDOW_SECONDS, name="integration"
    )
    retry = RetryConfig.from_settings(settings)
    app.state.executor = ResilientCallExecutor(
        app.state.breakers,
        limiter=app.state.integration_limiter,
        default_retry=retry,
    )

    default_headers = {}
    if settings.SERVICE_TOKEN:
        default_headers["Authorization"] = f"Bearer {settings.SERVICE_TOKEN}"
    # Attempt timeout stays inside the consumer budget
    app.state.http_client = ResilientHttpClient(
        app.state.executor,
        timeout=per_attempt_timeout(settings.CONSUMER_TIMEOUT_SECONDS, retry),
        default_headers=default_headers,
    )

    if database_configured():
        store = SqlIdempotencyStore(get_session_factory())
    else:
        logger.warning("No database configured: webhook idempotency is in-memory and per-process")
        store = InMemoryIdempotencyStore()

    app.state.webhook_dispatcher = WebhookDispatcher(
        store,
        app.state.http_client,
        build_default_consumers(settings),
        consumer_timeout=settings.CONSUMER_TIMEOUT_SECONDS,
    )
    app.state.reconciliation_service = ReconciliationService(SourceRegistry.from_settings(settings))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    logger.info("=" * 60)
    logger.info("Starting Ledger Core API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug Mode: {settings.debug_enabled}")
    logger.info("=" * 60)

    # Validate environment
    env_status = validate_environment()
    if not env_status["valid"]:
        for error in env_status["errors"]:
            logger.error(f"Configuration Error: {error}")
        if settings.is_production:
            raise RuntimeError("Cannot start in production with invalid configuration")

    for warning in env_status.get("warnings", []):
        logger.warning(f"Configuration Warning: {warning}")

    # Initialize database
    if database_configured():
        try:
            await init_db()
            logger.info("PostgreSQL connection established")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    build_services(app)
    sweeper = asyncio.create_task(
        run_periodic_sweep(
            [app.state.api_limiter, app.state.webhook_limiter, app.state.integration_limiter],
            interval=settings.RATE_LIMIT_SWEEP_INTERVAL,
        )
    )

    logger.info("Ledger Core API started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Ledger Core API...")
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await app.state.http_client.aclose()
    await dispose_engine()


# Create the main app
app = FastAPI(
    title=settings.API_TITLE,
    description="""
    Core for financial event ingestion and reconciliation.

    ## Features

    ### Webhooks (/api/webhooks)
    - Inbound events from Mercury, Stripe, Wave and DoorLoop
    - Exactly-once processing per (source, event id)
    - Fan-out to evidence, ledger, chronicle and logic consumers

    ### Reconciliation (/api/reconciliation)
    - Reference, amount + date and description matching tiers
    - Account summaries and portfolio reports
    - Suggested matches for review

    ### Resilience (/api/resilience)
    - Circuit breaker and rate limiter status
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


# ==================== HEALTH CHECK ENDPOINTS ====================

@api_router.get("/", tags=["Health"])
async def root():
    """Basic health check - returns 200 if service is running"""
    return {
        "message": "Ledger Core API",
        "status": "healthy",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@api_router.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Detailed health check for load balancers and uptime monitors.

    Returns:
    - 200: All systems operational (open breakers are reported, not fatal)
    - 503: Database unavailable
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {}
    }

    # Check PostgreSQL connection
    if database_configured():
        try:
            await check_db()
            health_status["checks"]["database"] = {
                "status": "connected",
                "type": "postgresql"
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = {
                "status": "disconnected",
                "error": str(e)
            }
    else:
        health_status["checks"]["database"] = {"status": "not_configured"}

    # Breakers that are not closed mean a downstream dependency is degraded
    breakers = getattr(request.app.state, "breakers", None)
    if breakers is not None:
        snapshot = breakers.snapshot_all()
        degraded = sorted(name for name, b in snapshot.items() if b["state"] != "closed")
        health_status["checks"]["dependencies"] = {
            "status": "degraded" if degraded else "ok",
            "open_breakers": degraded
        }

    # Check configuration
    env_status = validate_environment()
    health_status["checks"]["configuration"] = {
        "status": "valid" if env_status["valid"] else "invalid",
        "warnings": len(env_status.get("warnings", [])),
        "errors": len(env_status.get("errors", []))
    }

    # Return appropriate status code
    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status


@api_router.get("/health/ready", tags=["Health"])
async def readiness_check():
    """
    Kubernetes readiness check.
    Returns 200 only when the service can accept traffic.
    """
    try:
        if database_configured():
            await check_db()
        return {"status": "ready", "timestamp": datetime.now(timezone.utc).isoformat()}
    except Exception as e:
        raise HTTPException(status_code=503, detail={"status": "not_ready", "error": str(e)})


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    """
    Kubernetes liveness check.
    Returns 200 if the process is running (doesn't check dependencies).
    """
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


# Include all routers
api_router.include_router(webhooks_router)
api_router.include_router(reconciliation_router, dependencies=[Depends(enforce_api_rate_limit)])
api_router.include_router(resilience_router)

# Include the main router in the app
app.include_router(api_router)

register_error_handlers(app)

# ==================== MIDDLEWARE ====================

# CORS middleware with production-safe configuration
cors_config = get_cors_config()
app.add_middleware(
    CORSMiddleware,
    **cors_config
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information"""
    start_time = time.time()

    # Generate request ID
    request_id = request.headers.get("X-Request-ID", f"req-{int(start_time * 1000)}")
    set_request_context(request_id=request_id, client_ip=get_client_ip(request))

    if settings.debug_enabled:
        logger.debug(f"[{request_id}] {request.method} {request.url.path}")

    try:
        response = await call_next(request)

        # Calculate processing time
        process_time = time.time() - start_time

        # Add headers
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        # Log response
        if settings.debug_enabled or response.status_code >= 400:
            logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")

        return response
    except Exception as e:
        logger.error(f"[{request_id}] Request failed: {str(e)}")
        raise
    finally:
        clear_request_context()


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}")
    if settings.debug_enabled:
        logger.error(traceback.format_exc())

    capture_exception(exc, path=request.url.path, method=request.method)

    # Don't expose internal errors in production
    if settings.is_production:
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "code": "INTERNAL_ERROR"}
        )
    else:
        return JSONResponse(
            status_code=500,
            content={
                "error": str(exc),
                "code": "INTERNAL_ERROR",
                "type": type(exc).__name__,
                "traceback": traceback.format_exc() if settings.debug_enabled else None
            }
        )
