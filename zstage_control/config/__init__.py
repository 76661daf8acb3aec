"""
Config package - Configuration management.

This package contains the configuration management system
for loading focus-control settings from YAML files.

Modules:
    manager: ConfigManager for YAML configuration handling, FocusSettings
"""

from zstage_control.config.manager import ConfigManager, FocusSettings, DEFAULT_CONFIG

__all__ = ["ConfigManager", "FocusSettings", "DEFAULT_CONFIG"]
