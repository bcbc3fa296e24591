"""
Configuration utilities and settings management.

Process settings come from environment variables; the certificate
list comes from a JSON file validated into a BotlsConfig.
"""

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

from botls.core.errors import InvalidConfig
from botls.models.config import BotlsConfig

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Process settings loaded from environment variables."""

    config_file: str = Field(
        default="/etc/botls/config.json", alias="BOTLS_CONFIG_FILE", description="Path to the JSON certificate list"
    )
    log_level: str = Field(default="INFO", alias="BOTLS_LOG_LEVEL")

    acme_use_staging: bool = Field(
        default=False,
        alias="ACME_USE_STAGING",
        description="Use staging environment to avoid rate limits during testing",
    )
    acme_staging_url: str = Field(
        default="https://acme-staging-v02.api.letsencrypt.org/directory",
        alias="ACME_STAGING_URL",
        description="ACME staging directory URL for testing",
    )

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "cfg"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def validate(raw: Any) -> tuple[BotlsConfig | None, str | None]:
    """
    Validate and normalize a raw configuration structure.

    Applies defaults for data_dir, providers and renew_time.

    Returns:
        Tuple of (config, error); exactly one of them is None
    """
    if not isinstance(raw, Mapping):
        return None, "cfg must be a table"
    try:
        return BotlsConfig.model_validate(dict(raw)), None
    except ValidationError as e:
        return None, f"invalid cfg: {_format_validation_error(e)}"


def load_file(path: str | Path) -> tuple[BotlsConfig | None, str | None]:
    """Read, decode and validate a JSON configuration file."""
    try:
        content = Path(path).read_text()
    except OSError as e:
        return None, f"failed to read config file: {e}"
    try:
        raw = json.loads(content)
    except json.JSONDecodeError as e:
        return None, f"failed to decode config: {e}"
    return validate(raw)


def from_env() -> BotlsConfig:
    """
    Load the configuration file named by BOTLS_CONFIG_FILE.

    Raises:
        InvalidConfig if the file can't be read or validated
    """
    cfg, err = load_file(settings.config_file)
    if err:
        raise InvalidConfig(err, suggestion=f"Check {settings.config_file}")
    if settings.acme_use_staging:
        logger.info("Using ACME staging directory")
        cfg.directory_url = settings.acme_staging_url
    return cfg
