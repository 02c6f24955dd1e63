import os
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel

# Token and code lifetimes
SESSION_TOKEN_EXPIRE_HOURS = 24
RESET_TOKEN_EXPIRE_HOURS = 1
OTP_EXPIRE_MINUTES = 10

ALGORITHM = "HS256"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _database_name(uri: str) -> str:
    path = urlparse(uri).path.lstrip("/")
    return path or "expenzo"


class Settings(BaseModel):
    """Process-wide configuration, built once at startup"""

    mongo_uri: str = "mongodb://localhost:27017/expenzo"
    mongo_db: str = "expenzo"
    jwt_secret: str = "your-secret-key-change-in-production"

    email_user: Optional[str] = None
    email_password: Optional[str] = None
    email_from: str = "ExPeNzO <noreply@expenzo.com>"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587

    frontend_url: str = "http://localhost:5173"
    port: int = 4000
    cors_origins: List[str] = ["*"]

    # Insecure test mode: hand the OTP back when email delivery fails
    expose_dev_otp: bool = False

    rate_limit_enabled: bool = True
    api_rate_limit: str = "100 per 15 minutes"
    auth_rate_limit: str = "10 per 15 minutes"
    otp_rate_limit: str = "5 per 15 minutes"

    @property
    def email_configured(self) -> bool:
        return bool(self.email_user and self.email_password)

    @classmethod
    def from_env(cls) -> "Settings":
        mongo_uri = os.getenv("MONGO_URI", "mongodb://localhost:27017/expenzo")
        email_user = os.getenv("EMAIL_USER")
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            mongo_uri=mongo_uri,
            mongo_db=os.getenv("MONGO_DB") or _database_name(mongo_uri),
            jwt_secret=os.getenv("JWT_SECRET", "your-secret-key-change-in-production"),
            email_user=email_user,
            email_password=os.getenv("EMAIL_PASSWORD"),
            email_from=os.getenv("EMAIL_FROM") or email_user or "ExPeNzO <noreply@expenzo.com>",
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(os.getenv("SMTP_PORT", 587)),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/"),
            port=int(os.getenv("PORT", 4000)),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            expose_dev_otp=_env_flag("EXPOSE_DEV_OTP", False),
            rate_limit_enabled=_env_flag("RATE_LIMIT_ENABLED", True),
            api_rate_limit=os.getenv("API_RATE_LIMIT", "100 per 15 minutes"),
            auth_rate_limit=os.getenv("AUTH_RATE_LIMIT", "10 per 15 minutes"),
            otp_rate_limit=os.getenv("OTP_RATE_LIMIT", "5 per 15 minutes"),
        )
