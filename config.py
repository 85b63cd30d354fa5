import os
from typing import List, Optional

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: str = "storefront"
    jwt_secret: str = "dev-secret-change-me"
    admin_secret: str = ""
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    resend_api_key: Optional[str] = None
    admin_email: Optional[str] = None
    mail_from: str = "onboarding@resend.dev"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    strict_status_transitions: bool = True
    transaction_max_attempts: int = Field(5, ge=1)
    reminder_sweep_interval_seconds: int = Field(3600, ge=0)
    seed_demo_products: bool = True
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            database_name=os.getenv("DATABASE_NAME", "storefront"),
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
            admin_secret=os.getenv("ADMIN_SECRET", ""),
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID") or None,
            razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET") or None,
            resend_api_key=os.getenv("RESEND_API_KEY") or None,
            admin_email=os.getenv("ADMIN_EMAIL") or None,
            mail_from=os.getenv("MAIL_FROM", "onboarding@resend.dev"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            strict_status_transitions=_env_bool("STRICT_STATUS_TRANSITIONS", True),
            transaction_max_attempts=int(os.getenv("TRANSACTION_MAX_ATTEMPTS", 5)),
            reminder_sweep_interval_seconds=int(os.getenv("REMINDER_SWEEP_INTERVAL_SECONDS", 3600)),
            seed_demo_products=_env_bool("SEED_DEMO_PRODUCTS", True),
            port=int(os.getenv("PORT", 8000)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
