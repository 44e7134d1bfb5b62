import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def clean_env_value(value: Optional[str]) -> str:
    """Strip inline `#` comments and surrounding whitespace from an env value."""
    return (value or "").split("#")[0].strip()


def _first_env(*names: str, default: str = "") -> str:
    """Return the first non-empty cleaned value among several variable names."""
    for name in names:
        value = clean_env_value(os.getenv(name))
        if value:
            return value
    return default


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once at startup."""

    # SMTP / email
    smtp_host: str = ""
    smtp_port: str = ""
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_secure: bool = False
    email_from: str = ""
    notification_email: str = "digital@seedsofinnocence.com"

    # LeadSquared
    leadsquared_base_url: str = ""
    leadsquared_endpoint: str = ""
    leadsquared_access_key: str = ""
    leadsquared_secret_key: str = ""

    # Server
    allowed_origins: List[str] = field(default_factory=list)
    port: int = 4000
    default_lead_source: str = ""

    # Logging
    log_file: str = "logs/app.log"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        smtp_user = _first_env("SMTP_USER")
        smtp_from = _first_env("SMTP_FROM")
        email_from = (
            _first_env("EMAIL_FROM")
            or smtp_from
            or f'"SOI Website" <{smtp_user or "no-reply@example.com"}>'
        )
        origins = [
            origin.strip()
            for origin in _first_env("ALLOWED_ORIGINS").split(",")
            if origin.strip()
        ]

        return cls(
            smtp_host=_first_env("SMTP_HOST"),
            smtp_port=_first_env("SMTP_PORT"),
            smtp_user=smtp_user,
            smtp_password=_first_env("SMTP_PASS"),
            smtp_secure=_first_env("SMTP_SECURE").lower() in ("true", "1"),
            email_from=email_from,
            notification_email=_first_env(
                "RECEIVER_EMAIL", "NOTIFICATION_EMAIL",
                default="digital@seedsofinnocence.com",
            ),
            leadsquared_base_url=_first_env(
                "LSQ_BASE_URL", "LEADSQUARED_BASE_URL", "LEADSQUARED_DOMAIN"
            ),
            leadsquared_endpoint=_first_env(
                "LSQ_ENDPOINT", "LEADSQUARED_ENDPOINT", "LEADSQUARED_URL"
            ),
            leadsquared_access_key=_first_env(
                "LSQ_ACCESS_KEY", "LEADSQUARED_ACCESS_KEY", "ACCESS_KEY"
            ),
            leadsquared_secret_key=_first_env(
                "LSQ_SECRET_KEY", "LEADSQUARED_SECRET_KEY", "SECRET_KEY"
            ),
            allowed_origins=origins,
            port=int(_first_env("PORT", default="4000")),
            default_lead_source=_first_env("DEFAULT_LEAD_SOURCE"),
            log_file=_first_env("LOG_FILE", default="logs/app.log"),
            log_level=_first_env("LOG_LEVEL", default="INFO").upper(),
        )
