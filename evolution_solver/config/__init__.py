"""Configuration management for Evolution Solver."""

from evolution_solver.config.settings import (
    Settings,
    USER_CONFIG_FILE,
    get_settings,
    init_user_config,
)

__all__ = ["Settings", "USER_CONFIG_FILE", "get_settings", "init_user_config"]
