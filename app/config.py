import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @staticmethod
    def _get_bool(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None:
            return default
        return raw.strip().lower() in {"1", "true", "yes", "on"}

    @property
    def BASE_URL(self) -> str:
        return os.getenv("BASE_URL", "http://localhost:8000")

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 5)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def JWT_SECRET(self) -> str:
        return os.getenv("JWT_SECRET", "change-me-in-production")

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")

    # Payments

    @property
    def PAYMENT_PROVIDER(self) -> str:
        return os.getenv("PAYMENT_PROVIDER", "paystack").strip().lower()

    @property
    def CURRENCY(self) -> str:
        return os.getenv("CURRENCY", "ZAR")

    @property
    def PAYSTACK_SECRET_KEY(self) -> str:
        return os.getenv("PAYSTACK_SECRET_KEY", "")

    @property
    def PAYSTACK_BASE_URL(self) -> str:
        return os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")

    @property
    def PAYSTACK_CALLBACK_URL(self) -> str:
        return os.getenv("PAYSTACK_CALLBACK_URL", "http://localhost:3000/payment/callback")

    @property
    def STRIPE_SECRET_KEY(self) -> str:
        return os.getenv("STRIPE_SECRET_KEY", "")

    @property
    def STRIPE_WEBHOOK_SECRET(self) -> str:
        return os.getenv("STRIPE_WEBHOOK_SECRET", "")

    @property
    def STRIPE_SUCCESS_URL(self) -> str:
        return os.getenv("STRIPE_SUCCESS_URL", "http://localhost:3000/payment/callback")

    @property
    def STRIPE_CANCEL_URL(self) -> str:
        return os.getenv("STRIPE_CANCEL_URL", "http://localhost:3000/cart")

    @property
    def PLATFORM_FEE_PERCENT(self) -> int:
        return self._get_int("PLATFORM_FEE_PERCENT", 10)

    # Order lifecycle

    @property
    def COMMIT_WINDOW_HOURS(self) -> int:
        return self._get_int("COMMIT_WINDOW_HOURS", 48)

    @property
    def REMINDER_AFTER_HOURS(self) -> int:
        return self._get_int("REMINDER_AFTER_HOURS", 24)

    @property
    def URGENT_REMINDER_HOURS(self) -> int:
        return self._get_int("URGENT_REMINDER_HOURS", 12)

    @property
    def BOOK_HOLD_MINUTES(self) -> int:
        return self._get_int("BOOK_HOLD_MINUTES", 15)

    @property
    def DELIVERY_CHECK_DAYS(self) -> int:
        return self._get_int("DELIVERY_CHECK_DAYS", 5)

    @property
    def STALE_REFUND_MINUTES(self) -> int:
        return self._get_int("STALE_REFUND_MINUTES", 15)

    # Couriers

    @property
    def COURIER_GUY_API_KEY(self) -> str:
        return os.getenv("COURIER_GUY_API_KEY", "")

    @property
    def COURIER_GUY_BASE_URL(self) -> str:
        return os.getenv("COURIER_GUY_BASE_URL", "https://api.courierguy.co.za/v2")

    @property
    def FASTWAY_API_KEY(self) -> str:
        return os.getenv("FASTWAY_API_KEY", "")

    @property
    def FASTWAY_BASE_URL(self) -> str:
        return os.getenv("FASTWAY_BASE_URL", "https://api.fastway.co.za/v4")

    @property
    def HTTP_TIMEOUT_SECONDS(self) -> int:
        return self._get_int("HTTP_TIMEOUT_SECONDS", 15)

    @property
    def LABEL_STORAGE_DIR(self) -> str:
        return os.getenv("LABEL_STORAGE_DIR", "storage/shipping-labels")

    @property
    def LABEL_PUBLIC_BASE_URL(self) -> str:
        return os.getenv("LABEL_PUBLIC_BASE_URL", "http://localhost:8000/labels")

    # Email

    @property
    def SMTP_HOST(self) -> str:
        return os.getenv("SMTP_HOST", "")

    @property
    def SMTP_PORT(self) -> int:
        return self._get_int("SMTP_PORT", 587)

    @property
    def SMTP_USER(self) -> str:
        return os.getenv("SMTP_USER", "")

    @property
    def SMTP_PASSWORD(self) -> str:
        return os.getenv("SMTP_PASSWORD", "")

    @property
    def SMTP_USE_TLS(self) -> bool:
        return self._get_bool("SMTP_USE_TLS", True)

    @property
    def SMTP_FROM_EMAIL(self) -> str:
        return os.getenv("SMTP_FROM_EMAIL", "")

    @property
    def SMTP_FROM_NAME(self) -> str:
        return os.getenv("SMTP_FROM_NAME", "ReBooked Marketplace")

    @property
    def FRONTEND_URL(self) -> str:
        return os.getenv("FRONTEND_URL", "http://localhost:3000")

    # Operations

    @property
    def OPS_EMAIL(self) -> str:
        return os.getenv("OPS_EMAIL", "ops@example.com")

    @property
    def OPS_API_KEY(self) -> str:
        return os.getenv("OPS_API_KEY", "")

    @property
    def SWEEPER_ENABLED(self) -> bool:
        return self._get_bool("SWEEPER_ENABLED", True)

    @property
    def SWEEP_INTERVAL_SECONDS(self) -> int:
        return self._get_int("SWEEP_INTERVAL_SECONDS", 3600)


settings = Settings()

# Validate critical settings
if settings.JWT_SECRET == "change-me-in-production":
    import warnings
    warnings.warn("JWT_SECRET is using default value. Change it in production!", UserWarning)
