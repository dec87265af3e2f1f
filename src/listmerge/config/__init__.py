"""Application configuration helpers."""

from __future__ import annotations

from .env import optional_env
from .errors import ConfigurationError
from .logging import configure_logging
from .merge import MergeDefaults, get_merge_defaults
from .storage import TemplateStorageConfig, get_template_storage_config

__all__ = [
    "ConfigurationError",
    "MergeDefaults",
    "TemplateStorageConfig",
    "configure_logging",
    "get_merge_defaults",
    "get_template_storage_config",
    "optional_env",
]
