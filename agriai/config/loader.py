"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. config/config.yaml  -- static defaults checked into the repo
  2. .env file           -- local developer overrides (not committed)
  3. Environment vars    -- set at deploy time

``load_config()`` reads the YAML file first, then deep-merges the
environment-based values on top.
"""

from pathlib import Path

import yaml

from agriai.config.settings import Settings

# Used when config.yaml is missing or omits the maintenance block.
DEFAULT_MAINTENANCE = {
    "daily-cleanup-failed": {"job": "cleanup_failed", "hour": 2},
    "weekly-cleanup-orphaned": {"job": "cleanup_orphaned", "hour": 3, "weekday": 6},
}


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Settings instance to merge; a fresh one is built when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "queue": {
            "backend_url": settings.queue_backend_url,
            "max_attempts": settings.job_max_attempts,
            "backoff_seconds": settings.job_backoff_seconds,
            "workers": {
                "documents": settings.document_workers,
                "notifications": settings.notification_workers,
                "cleanup": settings.cleanup_workers,
            },
        },
        "llm": {
            "configured": bool(settings.openai_api_key),
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    yaml_config.setdefault("maintenance", {})
    for schedule_id, entry in DEFAULT_MAINTENANCE.items():
        yaml_config["maintenance"].setdefault(schedule_id, dict(entry))
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
