import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import checkout, jobs, orders
from app.config import settings
from app.db_init import init_db
from app.errors import (
    CourierBookingFailedError,
    InvalidTransitionError,
    InventoryConflictError,
    MarketplaceError,
    OrderNotFoundError,
    PaymentFailedError,
    SelfPurchaseError,
    ValidationError,
)
from app.services.deadline_sweeper import DeadlineSweeper
from app.services.notifications import shutdown_notification_executor
from app.startup_checks import (
    describe_database_url,
    parse_cors_origins,
    validate_database_url,
    validate_runtime_settings,
)
from app.webhooks import paystack_webhook, stripe_webhook

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("app.startup")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup initiated.")
    database_url = settings.DATABASE_URL
    try:
        logger.info("DATABASE_URL at startup: %s", describe_database_url(database_url))
        validate_database_url(database_url)
        validate_runtime_settings()
        init_db()
    except Exception as exc:
        logger.exception(
            "Startup failed: %s. DATABASE_URL: %s",
            str(exc),
            describe_database_url(database_url),
        )
        raise

    sweeper = None
    if settings.SWEEPER_ENABLED:
        sweeper = DeadlineSweeper(settings.SWEEP_INTERVAL_SECONDS)
        sweeper.start()
    logger.info("Application startup completed successfully.")
    yield
    if sweeper is not None:
        await sweeper.stop()
    shutdown_notification_executor()


app = FastAPI(
    title="Textbook Marketplace API",
    description=(
        "Order lifecycle for the textbook marketplace: multi-seller checkout, seller commitment, "
        "courier booking and refunds. Use **Authorize** with a platform access token for protected endpoints."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Checkout", "description": "Quotes, payment and order creation (requires auth)."},
        {"name": "Orders", "description": "Buyer and seller order actions (requires auth)."},
        {"name": "Jobs", "description": "Deadline sweeps for operators (X-Ops-Key header)."},
        {"name": "Webhooks", "description": "Called by Paystack and Stripe."},
    ],
)

ERROR_STATUS_CODES = [
    (CourierBookingFailedError, 502),
    (OrderNotFoundError, 404),
    (InvalidTransitionError, 409),
    (InventoryConflictError, 409),
    (PaymentFailedError, 402),
    (SelfPurchaseError, 400),
    (ValidationError, 400),
]


def status_code_for(error: MarketplaceError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        **openapi_schema.get("components", {}).get("securitySchemes", {}),
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "Access token issued by the platform auth service",
        },
    }
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=parse_cors_origins(settings.CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(checkout.router, prefix="/api/checkout", tags=["Checkout"])
app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])
app.include_router(paystack_webhook.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(stripe_webhook.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/")
def root():
    return {"status": "ok", "service": "Textbook Marketplace API"}


@app.get("/health")
def health():
    return {"status": "ok"}
