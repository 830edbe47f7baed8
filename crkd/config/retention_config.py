"""
Retention sweep configuration loader.
"""

import os
import yaml
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, ValidationError
from dotenv import load_dotenv

from .email_config import ConfigurationError


class RetentionConfig(BaseModel):
    """Retention sweep configuration."""
    enabled: bool = True
    collection: str = "reports"
    retention_hours: float = Field(default=24.0, gt=0)
    interval_seconds: float = Field(default=3600.0, gt=0)
    run_immediately: bool = False
    dry_run: bool = False
    audit_dir: Optional[str] = None


_ENV_FIELDS = {
    "RETENTION_ENABLED": "enabled",
    "RETENTION_COLLECTION": "collection",
    "RETENTION_WINDOW_HOURS": "retention_hours",
    "RETENTION_SWEEP_INTERVAL_SECONDS": "interval_seconds",
    "RETENTION_RUN_IMMEDIATELY": "run_immediately",
    "RETENTION_DRY_RUN": "dry_run",
    "RETENTION_AUDIT_DIR": "audit_dir",
}


def load_retention_config(config_path: Optional[Path] = None) -> RetentionConfig:
    """
    Load retention configuration.

    Values from the YAML file (``retention:`` section) are applied first and
    environment variables override them; anything left unset keeps its
    default.

    Raises:
        ConfigurationError: If a value cannot be parsed or is out of range.
    """
    load_dotenv()

    if config_path is None:
        config_path = os.getenv("RETENTION_CONFIG", "configs/retention.yaml")
    config_path = Path(config_path)

    values = {}
    if config_path.exists():
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
        values.update(config_data.get("retention", {}) or {})

    for env_name, field_name in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is not None and raw != "":
            values[field_name] = raw

    # pydantic coerces "true"/"false" and numeric strings
    try:
        return RetentionConfig(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid retention configuration: {problems}") from None
