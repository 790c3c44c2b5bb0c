from __future__ import annotations

import logging
import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .providers.base import ProviderConfig


class PollDefaults(BaseModel):
    """Default submit-and-poll settings for provider calls."""

    interval_ms: int = 3000
    max_duration_ms: int = 300_000
    max_network_errors: int = 5


class GenflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    poll: PollDefaults = PollDefaults()
    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)


def load_config(path: Optional[str] = None) -> GenflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to GENFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.

    Provider entries may omit ``name``; the mapping key is used instead.
    """

    config_path = path or os.getenv("GENFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        for name, provider in (data.get("providers") or {}).items():
            if isinstance(provider, dict):
                provider.setdefault("name", name)
        config = GenflowConfig(**data)
    else:
        config = GenflowConfig()

    env_db_url = os.getenv("GENFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config


_logging_configured = False


def configure_logging(level: str | int = "INFO") -> None:
    """Install a basic stderr handler once for command line use."""

    global _logging_configured
    if _logging_configured:
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    _logging_configured = True
