"""Configuration checks run once from the application lifespan.

Errors abort startup. Warnings are logged and cover integrations that degrade
gracefully (no courier key, no SMTP) rather than break the order lifecycle.
"""
import logging
from urllib.parse import urlparse

from app.config import settings
from app.services.couriers import get_courier_providers
from app.services.payment_gateways import get_enabled_payment_methods, get_payment_gateways

logger = logging.getLogger("app.startup")

POSTGRES_SCHEMES = {"postgres", "postgresql", "postgresql+psycopg"}
LOCAL_HOSTS = {"localhost", "127.0.0.1"}
DEFAULT_JWT_SECRET = "change-me-in-production"


def is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def parse_cors_origins(raw: str) -> list[str]:
    origins = []
    for origin in raw.split(","):
        origin = origin.strip().strip("'\"").strip()
        if origin:
            origins.append(origin)
    return origins


def validate_database_url(database_url: str) -> None:
    parsed = urlparse(database_url)
    if not parsed.scheme:
        raise RuntimeError("DATABASE_URL is missing URL scheme (expected postgresql:// or sqlite://).")
    if parsed.scheme == "sqlite":
        return
    if parsed.scheme not in POSTGRES_SCHEMES:
        raise RuntimeError(f"DATABASE_URL has unsupported scheme '{parsed.scheme}' (expected postgresql://).")
    if not parsed.hostname:
        raise RuntimeError("DATABASE_URL is missing host.")
    if not parsed.path.lstrip("/"):
        raise RuntimeError("DATABASE_URL is missing database name in path.")


def describe_database_url(database_url: str) -> str:
    """Summarise a DATABASE_URL for logs without leaking credentials."""
    parsed = urlparse(database_url)
    query = parsed.query or "<empty>"
    summary = (
        f"scheme={parsed.scheme or '<missing>'}, host={parsed.hostname or '<missing>'}, "
        f"port={parsed.port or '<missing>'}, database={parsed.path.lstrip('/') or '<missing>'}, query={query}"
    )

    tips = []
    if parsed.scheme == "sqlite":
        tips.append("sqlite is for local runs and tests; the sweeper and API share one file.")
    elif parsed.hostname in LOCAL_HOSTS:
        tips.append("Host is localhost; inside a container point it at the Postgres service name.")
    if parsed.scheme in POSTGRES_SCHEMES and "sslmode" not in query:
        tips.append("No sslmode in the query; managed Postgres usually needs sslmode=require.")
    if tips:
        summary += "; tips=" + " | ".join(tips)
    return summary


def _check_http_settings(errors: list[str], warnings: list[str]) -> None:
    jwt_secret = settings.JWT_SECRET.strip()
    if not jwt_secret:
        errors.append("JWT_SECRET is required.")
    elif jwt_secret == DEFAULT_JWT_SECRET and not settings.DATABASE_URL.startswith("sqlite"):
        errors.append("JWT_SECRET uses the insecure default value outside local sqlite runs.")

    if not is_http_url(settings.BASE_URL):
        errors.append("BASE_URL must be an absolute http(s) URL, e.g. https://books.example.com")

    origins = parse_cors_origins(settings.CORS_ORIGINS)
    if not origins:
        errors.append("CORS_ORIGINS must contain at least one comma-separated origin URL.")
    invalid_origins = [origin for origin in origins if not is_http_url(origin)]
    if invalid_origins:
        errors.append(f"CORS_ORIGINS contains invalid URL(s): {', '.join(invalid_origins)}")

    if not settings.OPS_API_KEY:
        warnings.append("OPS_API_KEY is not set; job and courier endpoints answer 503.")


def _check_lifecycle_settings(errors: list[str], warnings: list[str]) -> None:
    provider = settings.PAYMENT_PROVIDER
    gateways = get_payment_gateways()
    if provider not in gateways:
        errors.append(f"PAYMENT_PROVIDER must be one of: {', '.join(gateways)} (got '{provider}').")
    elif provider not in get_enabled_payment_methods():
        warnings.append(f"PAYMENT_PROVIDER={provider} has no secret key configured; checkout will fail.")

    if not 0 <= settings.PLATFORM_FEE_PERCENT < 100:
        errors.append("PLATFORM_FEE_PERCENT must be between 0 and 99.")
    if settings.COMMIT_WINDOW_HOURS <= 0:
        errors.append("COMMIT_WINDOW_HOURS must be positive.")
    elif settings.REMINDER_AFTER_HOURS >= settings.COMMIT_WINDOW_HOURS:
        warnings.append("REMINDER_AFTER_HOURS is not inside the commit window; sellers will never be reminded.")

    if not any(courier.enabled for courier in get_courier_providers()):
        warnings.append("No courier API key configured; commits will stay in 'committed' until booked manually.")
    if not settings.SMTP_HOST:
        warnings.append("SMTP_HOST is not set; buyer and seller emails will not be delivered.")


def validate_runtime_settings() -> None:
    errors: list[str] = []
    warnings: list[str] = []
    _check_http_settings(errors, warnings)
    _check_lifecycle_settings(errors, warnings)

    if warnings:
        logger.warning("Startup environment warnings: %s", " | ".join(warnings))
    if errors:
        raise RuntimeError("Startup environment validation failed: " + " | ".join(errors))
