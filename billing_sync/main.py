import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from billing_sync.api.routes import billing, health
from billing_sync.billing.dependencies import build_billing_services, configure_billing
from billing_sync.billing.errors import BillingError
from billing_sync.billing.store import InMemorySubscriptionStore, SQLSubscriptionStore
from billing_sync.config import settings
from billing_sync.core.database import dispose_database, init_database
from billing_sync.observability.metrics import metrics

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    # Initialize Sentry if DSN is provided
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO),
            ],
            traces_sample_rate=0.1,
            environment=settings.environment,
        )
        logger.info("Sentry initialized")

    # Initialize database and wire billing components around the chosen store
    session_factory = await init_database()
    store = (
        SQLSubscriptionStore(session_factory)
        if session_factory is not None
        else InMemorySubscriptionStore()
    )
    configure_billing(build_billing_services(store))

    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not set; webhook endpoint will answer 503")

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application")
    configure_billing(None)
    await dispose_database()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Subscription billing synchronization with Stripe",
    lifespan=lifespan,
    debug=settings.debug,
)

# Add CORS middleware
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Add security middleware
app.add_middleware(
    TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts or ["*"]
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    logger.info(f"{request.method} {request.url.path}")
    response = await call_next(request)
    logger.info(f"Response status: {response.status_code}")
    return response


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    """Render billing failures as JSON with the status carried by the error code."""
    status_code = exc.status_code
    if status_code >= 500:
        logger.error(
            "billing.request.failed",
            extra={"path": request.url.path, "code": exc.code, "error": str(exc)},
        )
        metrics.increment("billing.request.failed", tags={"code": exc.code})
    else:
        logger.info(
            "billing.request.rejected",
            extra={"path": request.url.path, "code": exc.code},
        )
    return JSONResponse(status_code=status_code, content={"error": str(exc), "code": exc.code})


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(billing.router, tags=["billing"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.environment,
    }
