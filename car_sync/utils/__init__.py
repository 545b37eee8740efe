"""Utilities package initialization."""
from .config import (
    GlobalSettings,
    apply_yaml_overrides,
    ensure_runtime_configuration,
    get_settings,
    load_yaml_config,
)
from .logging import log_progress, setup_logger

__all__ = [
    "GlobalSettings",
    "apply_yaml_overrides",
    "ensure_runtime_configuration",
    "get_settings",
    "load_yaml_config",
    "log_progress",
    "setup_logger",
]
