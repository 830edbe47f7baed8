"""
Mail transport configuration loader.
"""

import os
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, Field
from dotenv import load_dotenv


class ConfigurationError(RuntimeError):
    """Raised when required mail settings are missing or invalid."""


# Host, port and implicit-TLS defaults for well-known EMAIL_SERVICE names
WELL_KNOWN_SERVICES: Dict[str, Dict[str, Any]] = {
    "gmail": {"host": "smtp.gmail.com", "port": 587, "secure": False},
    "outlook": {"host": "smtp-mail.outlook.com", "port": 587, "secure": False},
    "hotmail": {"host": "smtp-mail.outlook.com", "port": 587, "secure": False},
    "yahoo": {"host": "smtp.mail.yahoo.com", "port": 465, "secure": True},
}

SMTP_REQUIRED_VARS = ("EMAIL_USER", "EMAIL_PASSWORD", "EMAIL_SERVICE")
MAILDRIVER_REQUIRED_VARS = ("MAILDRIVER_API_KEY",)


class EmailConfig(BaseModel):
    """Mail transport and recipient configuration."""
    transport: str = "smtp"
    service: Optional[str] = None
    host: str = "smtp.gmail.com"
    port: int = 587
    secure: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: Optional[str] = None
    from_name: str = "Crime Report Kenya"
    api_key: Optional[str] = None
    api_url: str = "https://api.maildiver.com/v1/messages"
    verify_url: str = "https://api.maildiver.com/v1/domains"
    validate_certs: bool = True
    send_timeout_seconds: float = 30.0
    max_concurrent_sends: int = 10
    admin_email: Optional[str] = None
    admin_emails: List[str] = Field(default_factory=list)
    frontend_url: str = "http://localhost:3000"

    @property
    def sender(self) -> str:
        """Address used in the From header."""
        return self.from_address or self.username or ""


def parse_address_list(value: Optional[str]) -> List[str]:
    """Split a comma-delimited address list, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(',') if part.strip()]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_email_config() -> EmailConfig:
    """
    Load mail configuration from .env file or environment variables.

    Raises:
        ConfigurationError: If the selected transport is missing credentials
            or a numeric setting cannot be parsed.
    """
    load_dotenv()

    transport = os.getenv("EMAIL_TRANSPORT", "smtp").strip().lower()
    if transport == "smtp":
        required = SMTP_REQUIRED_VARS
    elif transport == "maildiver":
        required = MAILDRIVER_REQUIRED_VARS
    else:
        raise ConfigurationError(
            f"Unknown EMAIL_TRANSPORT: {transport}. Available: smtp, maildiver"
        )

    missing = [name for name in required if not os.getenv(name)]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    service = os.getenv("EMAIL_SERVICE")
    defaults = WELL_KNOWN_SERVICES.get((service or "").lower(), WELL_KNOWN_SERVICES["gmail"])

    try:
        port = int(os.getenv("EMAIL_PORT") or defaults["port"])
        send_timeout = float(os.getenv("EMAIL_SEND_TIMEOUT_SECONDS", "30"))
        max_concurrent = int(os.getenv("EMAIL_MAX_CONCURRENT_SENDS", "10"))
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric mail setting: {e}") from None

    if port <= 0:
        raise ConfigurationError("EMAIL_PORT must be a positive integer")
    if send_timeout <= 0 or max_concurrent <= 0:
        raise ConfigurationError(
            "EMAIL_SEND_TIMEOUT_SECONDS and EMAIL_MAX_CONCURRENT_SENDS must be positive"
        )

    return EmailConfig(
        transport=transport,
        service=service,
        host=os.getenv("EMAIL_HOST") or defaults["host"],
        port=port,
        secure=_env_flag("EMAIL_SECURE", defaults["secure"]),
        username=os.getenv("EMAIL_USER"),
        password=os.getenv("EMAIL_PASSWORD"),
        from_address=os.getenv("EMAIL_FROM"),
        from_name=os.getenv("EMAIL_FROM_NAME", "Crime Report Kenya"),
        api_key=os.getenv("MAILDRIVER_API_KEY"),
        api_url=os.getenv("MAILDRIVER_API_URL", "https://api.maildiver.com/v1/messages"),
        verify_url=os.getenv("MAILDRIVER_VERIFY_URL", "https://api.maildiver.com/v1/domains"),
        validate_certs=_env_flag("EMAIL_VALIDATE_CERTS", True),
        send_timeout_seconds=send_timeout,
        max_concurrent_sends=max_concurrent,
        admin_email=os.getenv("ADMIN_EMAIL") or None,
        admin_emails=parse_address_list(os.getenv("ADMIN_EMAILS")),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip('/'),
    )
