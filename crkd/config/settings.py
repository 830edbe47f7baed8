"""
HTTP server configuration loader.
"""

import os
from typing import List
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from .email_config import ConfigurationError


class ServerConfig(BaseModel):
    """HTTP server and storage location configuration."""
    host: str = "0.0.0.0"
    port: int = 5000
    database_path: str = "data/crkd.db"
    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


def load_server_config() -> ServerConfig:
    """Load server configuration from .env file or environment variables."""
    load_dotenv()

    try:
        port = int(os.getenv("PORT", "5000"))
    except ValueError:
        raise ConfigurationError(f"PORT must be an integer, got {os.getenv('PORT')!r}") from None

    origins = os.getenv("CORS_ORIGINS", "*")
    return ServerConfig(
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        database_path=os.getenv("DATABASE_PATH", "data/crkd.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=[o.strip() for o in origins.split(',') if o.strip()],
    )
