from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_EXPECTED_DAYS, DEFAULT_PERSIST_TIMEOUT


class OnboardflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    default_expected_days: int = Field(default=DEFAULT_EXPECTED_DAYS, ge=0)
    persist_timeout: float = Field(default=DEFAULT_PERSIST_TIMEOUT, gt=0)
    templates_path: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> OnboardflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to ONBOARDFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("ONBOARDFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = OnboardflowConfig(**data)
    else:
        config = OnboardflowConfig()

    env_db_url = os.getenv("ONBOARDFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
