"""Configuration loading."""

from dockwright.lib.config.settings import (
    DockwrightConfig,
    LifecycleConfig,
    load_config,
    resolve_config_path,
)

__all__ = ["DockwrightConfig", "LifecycleConfig", "load_config", "resolve_config_path"]
