"""Configuration module -- exports Settings and load_config."""

from agriai.config.loader import load_config
from agriai.config.settings import Settings

__all__ = ["Settings", "load_config"]
