"""Configuration loading for the keyword discovery pipeline."""

import logging
import os
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = "config/config.yaml"

# (environment variable, config section, key)
_ENV_OVERRIDES = (
    ("GCP_PROJECT_ID", "gcp", "project_id"),
    ("GCP_REGION", "gcp", "region"),
    ("BIGQUERY_DATASET", "gcp", "bigquery_dataset"),
    ("DATAFORSEO_LOGIN", "metrics", "login"),
    ("DATAFORSEO_PASSWORD", "metrics", "password"),
)


def load_config(config_path: str | None = None) -> dict[str, Any]:
    """Read the YAML config and apply environment overrides.

    Args:
        config_path: Config file path. Defaults to $CONFIG_PATH, then
                     config/config.yaml.

    Returns:
        Configuration dict with credentials and deployment settings
        taken from the environment where set.
    """
    path = config_path or os.environ.get("CONFIG_PATH", _DEFAULT_CONFIG_PATH)
    logger.info("Loading config from %s", path)

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    # Credentials and deployment settings come from the environment
    for env_name, section, key in _ENV_OVERRIDES:
        if os.environ.get(env_name):
            config.setdefault(section, {})[key] = os.environ[env_name]
    if os.environ.get("RUN_MODE"):
        config["run_mode"] = os.environ["RUN_MODE"]

    return config
